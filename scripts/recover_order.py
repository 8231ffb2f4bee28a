"""Recreate an order for a payment whose ITN never arrived.

Either point at a surviving pending order with `--temp-order-id`, or pass a
JSON file with a manual reconstruction (customer, addresses, items, shipping).
"""

import argparse
import json
import os
from pathlib import Path

import httpx


def main() -> None:
    """CLI entrypoint for operator-driven order recovery."""

    parser = argparse.ArgumentParser(description="Create a missing order through the recovery admin API.")
    parser.add_argument("--recovery-url", default="http://localhost:8003")
    parser.add_argument("--api-key", default=os.getenv("API_KEY", "local-dev-key"))
    parser.add_argument("--payment-reference", required=True, help="PayFast pf_payment_id")
    parser.add_argument("--temp-order-id", default=None, help="TEMP-... id sent to PayFast as m_payment_id")
    parser.add_argument("--reconstruction", default=None, help="Path to JSON with the re-entered order")
    args = parser.parse_args()

    if not args.temp_order_id and not args.reconstruction:
        parser.error("provide --temp-order-id or --reconstruction")

    body: dict = {"payment_reference": args.payment_reference}
    if args.temp_order_id:
        body["temp_order_id"] = args.temp_order_id
    if args.reconstruction:
        body["reconstruction"] = json.loads(Path(args.reconstruction).read_text(encoding="utf-8"))

    resp = httpx.post(
        f"{args.recovery_url}/admin/recovery/orders",
        headers={"x-api-key": args.api_key},
        json=body,
        timeout=10.0,
    )
    if resp.status_code == 409:
        print(f"Order already exists: {resp.json()['detail']['order_number']}")
        raise SystemExit(1)
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
