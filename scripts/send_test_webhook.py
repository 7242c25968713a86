"""Send a signed payment gateway callback to a running payments service.

Useful for replaying duplicate or out-of-order deliveries by hand.
"""

import argparse
import hashlib
import hmac
import json

import httpx


def main() -> None:
    """Build, sign and POST one callback body."""

    parser = argparse.ArgumentParser(description="POST a signed deposit callback.")
    parser.add_argument("--url", default="http://localhost:8000/deposits/callback")
    parser.add_argument("--secret", required=True, help="IPN secret shared with the gateway")
    parser.add_argument("--order-id", required=True)
    parser.add_argument("--payment-id", default="5077125051")
    parser.add_argument("--status", default="finished")
    parser.add_argument("--actually-paid", default=None)
    parser.add_argument("--outcome-amount", default=None)
    parser.add_argument("--bad-signature", action="store_true", help="Sign with a wrong secret")
    args = parser.parse_args()

    payload = {"payment_id": args.payment_id, "payment_status": args.status, "order_id": args.order_id}
    if args.actually_paid is not None:
        payload["actually_paid"] = args.actually_paid
    if args.outcome_amount is not None:
        payload["outcome_amount"] = args.outcome_amount
    body = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")

    secret = args.secret + "-wrong" if args.bad_signature else args.secret
    signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()

    resp = httpx.post(
        args.url,
        content=body,
        headers={"content-type": "application/json", "x-nowpayments-sig": signature},
        timeout=10.0,
    )
    print(resp.status_code)
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
