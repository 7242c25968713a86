"""Fetch and print the wallet reconciliation report JSON."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for wallet balance vs journal checks."""

    parser = argparse.ArgumentParser(description="Fetch wallet reconciliation report endpoint.")
    parser.add_argument("--payments-url", default="http://localhost:8002")
    parser.add_argument("--operator-id", default="ops")
    parser.add_argument("--limit", type=int, default=1000)
    args = parser.parse_args()

    resp = httpx.get(
        f"{args.payments_url}/admin/wallets/reconciliation",
        params={"limit": args.limit},
        headers={"x-user-id": args.operator_id, "x-user-role": "admin"},
        timeout=10.0,
    )
    resp.raise_for_status()
    report = resp.json()
    print(json.dumps(report, indent=2))
    if report.get("mismatched_count"):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
