"""Fetch and print a tenant's transaction history or summary as JSON."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for audit-trail inspection."""

    parser = argparse.ArgumentParser(description="Fetch tenant transaction history from the payments service.")
    parser.add_argument("tenant_id")
    parser.add_argument("--payments-url", default="http://localhost:8000")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--order", choices=["desc", "asc"], default="desc")
    parser.add_argument("--summary", action="store_true", help="Fetch the roll-up instead of raw records")
    args = parser.parse_args()

    if args.summary:
        url = f"{args.payments_url}/tenants/{args.tenant_id}/summary"
        params = {"limit": args.limit}
    else:
        url = f"{args.payments_url}/tenants/{args.tenant_id}/transactions"
        params = {"limit": args.limit, "order": args.order}
    resp = httpx.get(url, params=params, timeout=10.0)
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
