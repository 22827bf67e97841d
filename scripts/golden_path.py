#!/usr/bin/env python3
"""Golden path demo for the Task Ledger: create, approve, watch it complete."""

from __future__ import annotations

import json
import os
import sys
import time
from typing import Any
from urllib.error import HTTPError
from urllib.request import Request, urlopen


def _env(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value


class LedgerClient:
    def __init__(self, base_url: str, tenant_id: str, user_id: str, api_key: str | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers: dict[str, str] = {
            "Content-Type": "application/json",
            "X-Tenant-ID": tenant_id,
            "X-User-ID": user_id,
        }
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    def call(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        data = json.dumps(payload, default=str).encode("utf-8") if payload is not None else None

        req = Request(url, data=data, method=method)
        for key, value in self.headers.items():
            req.add_header(key, value)

        try:
            with urlopen(req, timeout=10.0) as response:
                raw = response.read()
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"{method} {url} failed: {exc.code} {exc.reason}: {detail}") from None

        return json.loads(raw.decode("utf-8")) if raw else None


def main() -> int:
    base_url = _env("TASKLEDGER_URL", "http://localhost:8080")
    tenant_id = _env("TASKLEDGER_TENANT_ID", "demo-tenant")
    user_id = _env("TASKLEDGER_USER_ID", "demo-owner")
    api_key = _env("TASKLEDGER_API_KEY")
    timeout_seconds = float(_env("TASKLEDGER_DEMO_TIMEOUT", "15"))

    client = LedgerClient(base_url, tenant_id, user_id, api_key=api_key)

    print("Checking health...")
    health = client.call("GET", "/v1/health")
    if health.get("status") != "healthy":
        raise RuntimeError(f"Unexpected health response: {health}")

    print("Creating a payment reminder awaiting approval...")
    task = client.call(
        "POST",
        "/v1/task-ledger",
        {
            "type": "AI_ACTION",
            "category": "BILLING",
            "title": "Send payment reminder for INV-1001",
            "action_type": "SEND_PAYMENT_REMINDER",
            "entity_type": "invoice",
            "entity_id": "inv-1001",
            "payload": {"channel": "sms"},
            "undo_window_mins": 5,
            "ai_confidence": 0.92,
        },
    )
    task_id = task["id"]
    print(f"Created task {task_id} ({task['status']})")

    again = client.call(
        "POST",
        "/v1/task-ledger",
        {
            "type": "AI_ACTION",
            "category": "BILLING",
            "title": "Send payment reminder for INV-1001",
            "action_type": "SEND_PAYMENT_REMINDER",
            "entity_type": "invoice",
            "entity_id": "inv-1001",
            "payload": {"channel": "sms"},
        },
    )
    print(f"Repeated create returned {again['id']} (deduplicated: {again['id'] == task_id})")

    approved = client.call("POST", f"/v1/task-ledger/{task_id}/approve")
    print(f"Approved: {approved['status']}")

    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        current = client.call("GET", f"/v1/task-ledger/{task_id}")
        if current["status"] in ("COMPLETED", "FAILED"):
            print(f"Final status: {current['status']}")
            print(json.dumps(current.get("result"), indent=2))
            break
        time.sleep(0.5)
    else:
        print("Timed out waiting for the worker (is TASKLEDGER_WORKER_ENABLED=true?)")
        return 1

    undone = client.call("POST", f"/v1/task-ledger/{task_id}/undo")
    print(f"Undo: {undone['status']}")

    stats = client.call("GET", "/v1/task-ledger/stats")
    print(f"Stats: {stats}")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except RuntimeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
