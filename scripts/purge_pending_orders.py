"""Purge expired or unreadable pending orders; safe to run from cron."""

import argparse
import os

import httpx


def main() -> None:
    """CLI entrypoint for the pending-order expiry sweep."""

    parser = argparse.ArgumentParser(description="Trigger the pending-order expiry sweep.")
    parser.add_argument("--recovery-url", default="http://localhost:8003")
    parser.add_argument("--api-key", default=os.getenv("API_KEY", "local-dev-key"))
    parser.add_argument("--list", action="store_true", help="List pending orders instead of purging")
    args = parser.parse_args()

    headers = {"x-api-key": args.api_key}
    if args.list:
        resp = httpx.get(f"{args.recovery_url}/admin/pending-orders", headers=headers, timeout=10.0)
        resp.raise_for_status()
        for row in resp.json():
            print(f"{row['order_number']}  {row['email']}  {row['total_cents']}  {row['created_at']}")
        return

    resp = httpx.post(f"{args.recovery_url}/admin/pending-orders/purge", headers=headers, timeout=30.0)
    resp.raise_for_status()
    print(f"purged={resp.json()['purged']}")


if __name__ == "__main__":
    main()
