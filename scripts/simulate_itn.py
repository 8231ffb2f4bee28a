"""Sign and post a PayFast-style ITN to the local webhook.

Useful for sandbox testing of the notify path and for duplicate-delivery
checks (`--repeat 2`).
"""

import argparse
import os

import httpx

from ikhaya.common.signature import NOTIFICATION_FIELD_ORDER, sign


def main() -> None:
    """CLI entrypoint for ITN simulation."""

    parser = argparse.ArgumentParser(description="Post a signed ITN to the webhook service.")
    parser.add_argument("--webhook-url", default="http://localhost:8002")
    parser.add_argument("--m-payment-id", required=True)
    parser.add_argument("--pf-payment-id", default="PF-SIM-1")
    parser.add_argument("--amount", required=True, help="Gross amount, e.g. 300.00")
    parser.add_argument("--status", default="COMPLETE", choices=["COMPLETE", "FAILED", "CANCELLED", "PENDING"])
    parser.add_argument("--merchant-id", default=os.getenv("PAYFAST_MERCHANT_ID", "10000100"))
    parser.add_argument("--passphrase", default=os.getenv("PAYFAST_PASSPHRASE", ""))
    parser.add_argument("--bad-signature", action="store_true")
    parser.add_argument("--repeat", type=int, default=1)
    args = parser.parse_args()

    fields = {
        "m_payment_id": args.m_payment_id,
        "pf_payment_id": args.pf_payment_id,
        "payment_status": args.status,
        "item_name": f"Ikhaya Order {args.m_payment_id}",
        "amount_gross": args.amount,
        "amount_fee": "0.00",
        "amount_net": args.amount,
        "merchant_id": args.merchant_id,
    }
    signature = sign(fields, args.passphrase, NOTIFICATION_FIELD_ORDER)
    if args.bad_signature:
        signature = "0" * 32
    body = [(key, fields[key]) for key in NOTIFICATION_FIELD_ORDER if key in fields]
    body.append(("signature", signature))

    for attempt in range(1, args.repeat + 1):
        resp = httpx.post(f"{args.webhook_url}/payfast/notify", data=dict(body), timeout=10.0)
        print(f"attempt={attempt} status={resp.status_code} body={resp.text}")


if __name__ == "__main__":
    main()
