"""Fetch and print the ledger history of one subscription."""

import argparse
import json
import os

import httpx


def main() -> None:
    """CLI entrypoint for ledger inspection."""

    parser = argparse.ArgumentParser(description="Print payment ledger rows for a transaction key.")
    parser.add_argument("transaction_key")
    parser.add_argument("--billing-url", default="http://localhost:8001")
    parser.add_argument("--api-key", default=os.getenv("ADMIN_API_KEY", ""))
    args = parser.parse_args()

    resp = httpx.get(
        f"{args.billing_url}/ledger/{args.transaction_key}",
        headers={"x-api-key": args.api_key},
        timeout=10.0,
    )
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
