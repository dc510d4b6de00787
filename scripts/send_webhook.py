"""Post a simulated PortOne notification to the billing service.

Useful for replaying a delivery by hand and for duplicate-delivery checks.
"""

import argparse
import json

import httpx


def main() -> None:
    parser = argparse.ArgumentParser(description="Send a payment webhook to the billing service.")
    parser.add_argument("payment_id")
    parser.add_argument("--status", default="Paid", help="Paid, Cancelled, or any other gateway status")
    parser.add_argument("--billing-url", default="http://localhost:8001")
    parser.add_argument("--repeat", type=int, default=1, help="Deliver the same notification N times")
    args = parser.parse_args()

    payload = {"payment_id": args.payment_id, "status": args.status}
    for attempt in range(1, args.repeat + 1):
        resp = httpx.post(f"{args.billing_url}/webhooks/portone", json=payload, timeout=30.0)
        print(f"attempt={attempt} status_code={resp.status_code}")
        print(json.dumps(resp.json(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
