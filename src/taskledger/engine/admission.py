"""Admission helpers: idempotency key derivation and initial status."""

import hashlib
import json
from datetime import datetime
from typing import Any
from uuid import uuid4

from taskledger.models import CreateTaskOptions, TaskLedgerStatus, TaskLedgerType
from taskledger.utils.time import ensure_utc, utc_now


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def canonical_json(payload: dict[str, Any]) -> str:
    """Serialize a payload with sorted keys and no insignificant whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def payload_hash(payload: dict[str, Any] | None) -> str | None:
    """Short content digest of a payload (operational dedup, not security).

    Only a missing payload has no hash; an empty object is still content.
    """
    if payload is None:
        return None
    return _sha256_hex(canonical_json(payload))[:8]


def iso_timestamp(value: datetime) -> str:
    """Millisecond ISO-8601 in UTC with a ``Z`` suffix."""
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def random_idempotency_key() -> str:
    return _sha256_hex(str(uuid4()))[:32]


def derive_idempotency_key(opts: CreateTaskOptions) -> str:
    """
    Derive a deterministic idempotency key from the admission payload.

    Manual human asks (HUMAN_TASK with neither ``action_type`` nor
    ``action_endpoint``) are not naturally deduplicable and get a random key.
    """
    if (
        opts.type == TaskLedgerType.HUMAN_TASK
        and not opts.action_type
        and not opts.action_endpoint
    ):
        return random_idempotency_key()

    parts = [
        opts.tenant_id,
        opts.type.value,
        opts.category.value,
        opts.action_type,
        opts.action_endpoint,
        opts.entity_type,
        opts.entity_id,
        iso_timestamp(opts.scheduled_for) if opts.scheduled_for else None,
        payload_hash(opts.payload),
    ]
    return _sha256_hex(":".join(p for p in parts if p))[:32]


def initial_status(scheduled_for: datetime | None, now: datetime | None = None) -> TaskLedgerStatus:
    """SCHEDULED for a future ``scheduled_for``, PENDING otherwise."""
    now = now or utc_now()
    if scheduled_for and ensure_utc(scheduled_for) > now:
        return TaskLedgerStatus.SCHEDULED
    return TaskLedgerStatus.PENDING
