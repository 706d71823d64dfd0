#!/usr/bin/env python3
"""
Drive the create -> confirm -> re-confirm -> poll flow against a running API.

    python scripts/smoke_flow.py --base-url http://localhost:8000 --mode ivr
"""
import argparse
import sys
import time

import httpx

TERMINAL = {"success", "pending", "failed"}


def run(base_url: str, mode: str, wait_sec: float) -> int:
    with httpx.Client(base_url=base_url, timeout=5.0) as client:
        resp = client.post("/transactions", json={"payeeVpa": "bob@upi", "payeeName": "Bob", "amount": 250})
        if resp.status_code != 201:
            print(f"create failed: {resp.status_code} {resp.text}")
            return 1
        txn = resp.json()["transaction"]
        print(f"created {txn['id']} status={txn['status']}")

        resp = client.post(f"/transactions/{txn['id']}/confirm", json={"mode": mode})
        if resp.status_code != 200:
            print(f"confirm failed: {resp.status_code} {resp.text}")
            return 1
        body = resp.json()
        print(f"confirmed mode={body['transaction']['mode']} steps={len(body['instruction']['steps'])}")
        for i, step in enumerate(body["instruction"]["steps"], 1):
            print(f"  {i}. {step}")

        resp = client.post(f"/transactions/{txn['id']}/confirm", json={"mode": mode})
        print(f"re-confirm -> {resp.status_code} {resp.json().get('code')}")

        deadline = time.monotonic() + wait_sec
        status = None
        while time.monotonic() < deadline:
            status = client.get(f"/transactions/{txn['id']}/status").json()["status"]
            if status in TERMINAL:
                break
            time.sleep(0.5)
        print(f"final status={status}")
        return 0 if status in TERMINAL else 2


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--mode", default="ivr", choices=["ussd", "ivr"])
    parser.add_argument("--wait", type=float, default=10.0)
    args = parser.parse_args()
    sys.exit(run(args.base_url, args.mode, args.wait))


if __name__ == "__main__":
    main()
