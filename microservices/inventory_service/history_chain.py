"""
Status History Hash Chain

Each status transition carries ``entry_hash = SHA256(canonical(entry) +
previous_hash)``; the first entry of a product chains from ``GENESIS``.
Editing, dropping or reordering any persisted entry breaks verification
from that point on.

This module never repairs a chain. A mismatch is reported, not fixed.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from .models import ProductStatus, StatusTransition

GENESIS_HASH = "GENESIS"


def _utc_iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


def canonical_serialize(payload: dict) -> str:
    """Deterministic JSON: sorted keys, no whitespace, ASCII only"""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=str,
    )


def transition_payload(
    product_id: str,
    status: ProductStatus,
    timestamp: datetime,
    actor_id: str,
    note: Optional[str],
) -> dict:
    return {
        "product_id": product_id,
        "status": status.value,
        "timestamp": _utc_iso(timestamp),
        "actor_id": actor_id,
        "note": note,
    }


def compute_entry_hash(payload: dict, previous_hash: str) -> str:
    hash_input = canonical_serialize(payload) + previous_hash
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()


def seal_transition(
    product_id: str,
    status: ProductStatus,
    timestamp: datetime,
    actor_id: str,
    note: Optional[str],
    previous_hash: str,
) -> StatusTransition:
    """Build a transition linked to ``previous_hash``"""
    payload = transition_payload(product_id, status, timestamp, actor_id, note)
    return StatusTransition(
        status=status,
        timestamp=timestamp,
        actor_id=actor_id,
        note=note,
        previous_hash=previous_hash,
        entry_hash=compute_entry_hash(payload, previous_hash),
    )


def last_hash(history: Sequence[StatusTransition]) -> str:
    return history[-1].entry_hash if history else GENESIS_HASH


@dataclass
class ChainVerification:
    valid: bool
    broken_at: Optional[int] = None
    reason: Optional[str] = None


def verify_history(product_id: str, history: List[StatusTransition]) -> ChainVerification:
    """Walk the chain from GENESIS and report the first broken entry"""
    expected_previous = GENESIS_HASH
    previous_ts: Optional[datetime] = None

    for index, entry in enumerate(history):
        if entry.previous_hash != expected_previous:
            return ChainVerification(False, index, "previous_hash does not link to prior entry")

        payload = transition_payload(product_id, entry.status, entry.timestamp, entry.actor_id, entry.note)
        if compute_entry_hash(payload, entry.previous_hash) != entry.entry_hash:
            return ChainVerification(False, index, "entry_hash does not match entry contents")

        if previous_ts is not None and entry.timestamp < previous_ts:
            return ChainVerification(False, index, "timestamp earlier than previous entry")

        expected_previous = entry.entry_hash
        previous_ts = entry.timestamp

    return ChainVerification(True)
