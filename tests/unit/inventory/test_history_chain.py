"""
Unit Tests for the status history hash chain
"""

from datetime import datetime, timedelta, timezone

import pytest

from microservices.inventory_service.history_chain import (
    GENESIS_HASH,
    canonical_serialize,
    last_hash,
    seal_transition,
    verify_history,
)
from microservices.inventory_service.models import ProductStatus

pytestmark = pytest.mark.unit

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def build_chain(product_id="prod_1"):
    history = []
    steps = [
        (ProductStatus.AVAILABLE, "farmer_1", "Product listed"),
        (ProductStatus.PREPARING, "farmer_1", None),
        (ProductStatus.SHIPPED, "farmer_1", "Courier picked up"),
    ]
    for index, (status, actor, note) in enumerate(steps):
        history.append(seal_transition(
            product_id, status, T0 + timedelta(minutes=index), actor, note, last_hash(history)
        ))
    return history


class TestCanonicalSerialize:

    def test_sorted_keys_without_whitespace(self):
        assert canonical_serialize({"b": 1, "a": None}) == '{"a":null,"b":1}'

    def test_non_ascii_escaped(self):
        assert canonical_serialize({"note": "Łódź"}) == '{"note":"\\u0141\\u00f3d\\u017a"}'


class TestSeal:

    def test_first_entry_links_to_genesis(self):
        history = build_chain()
        assert history[0].previous_hash == GENESIS_HASH
        assert last_hash([]) == GENESIS_HASH

    def test_entries_link_to_predecessor(self):
        history = build_chain()
        assert history[1].previous_hash == history[0].entry_hash
        assert history[2].previous_hash == history[1].entry_hash

    def test_hash_is_deterministic(self):
        a = seal_transition("p", ProductStatus.AVAILABLE, T0, "f", None, GENESIS_HASH)
        b = seal_transition("p", ProductStatus.AVAILABLE, T0, "f", None, GENESIS_HASH)
        assert a.entry_hash == b.entry_hash
        assert len(a.entry_hash) == 64

    def test_naive_timestamp_treated_as_utc(self):
        aware = seal_transition("p", ProductStatus.AVAILABLE, T0, "f", None, GENESIS_HASH)
        naive = seal_transition("p", ProductStatus.AVAILABLE, T0.replace(tzinfo=None), "f", None, GENESIS_HASH)
        assert aware.entry_hash == naive.entry_hash

    def test_hash_depends_on_product(self):
        a = seal_transition("p1", ProductStatus.AVAILABLE, T0, "f", None, GENESIS_HASH)
        b = seal_transition("p2", ProductStatus.AVAILABLE, T0, "f", None, GENESIS_HASH)
        assert a.entry_hash != b.entry_hash


class TestVerify:

    def test_intact_chain_verifies(self):
        result = verify_history("prod_1", build_chain())
        assert result.valid
        assert result.broken_at is None

    def test_empty_history_verifies(self):
        assert verify_history("prod_1", []).valid

    def test_edited_entry_detected(self):
        history = build_chain()
        history[1] = history[1].model_copy(update={"note": "edited"})
        result = verify_history("prod_1", history)
        assert not result.valid
        assert result.broken_at == 1

    def test_dropped_entry_detected(self):
        history = build_chain()
        del history[1]
        result = verify_history("prod_1", history)
        assert not result.valid
        assert result.broken_at == 1

    def test_reordered_entries_detected(self):
        history = build_chain()
        history[1], history[2] = history[2], history[1]
        assert not verify_history("prod_1", history).valid

    def test_history_of_other_product_rejected(self):
        assert not verify_history("prod_2", build_chain("prod_1")).valid

    def test_decreasing_timestamp_detected(self):
        first = seal_transition("p", ProductStatus.AVAILABLE, T0, "f", None, GENESIS_HASH)
        second = seal_transition("p", ProductStatus.UNAVAILABLE, T0 - timedelta(seconds=1), "f", None, first.entry_hash)
        result = verify_history("p", [first, second])
        assert not result.valid
        assert result.broken_at == 1
