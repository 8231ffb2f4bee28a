"""Fetch and print the payment reconciliation report JSON."""

import argparse
import json
import os

import httpx


def main() -> None:
    """CLI entrypoint for reconciliation checks."""

    parser = argparse.ArgumentParser(description="Fetch payment reconciliation report endpoint.")
    parser.add_argument("--recovery-url", default="http://localhost:8003")
    parser.add_argument("--api-key", default=os.getenv("API_KEY", "local-dev-key"))
    parser.add_argument("--limit", type=int, default=50)
    parser.add_argument("--orphaned", action="store_true", help="Also list orphaned payments")
    args = parser.parse_args()

    headers = {"x-api-key": args.api_key}
    resp = httpx.get(
        f"{args.recovery_url}/admin/recovery/report",
        headers=headers,
        params={"limit": args.limit},
        timeout=10.0,
    )
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))

    if args.orphaned:
        resp = httpx.get(
            f"{args.recovery_url}/admin/recovery/orphaned",
            headers=headers,
            params={"limit": args.limit},
            timeout=10.0,
        )
        resp.raise_for_status()
        print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
