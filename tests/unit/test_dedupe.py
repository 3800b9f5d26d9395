"""Tests for the delivery dedupe store."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from src.webhook.dedupe import DeliveryDedupeStore

T0 = 1_772_368_200.0


class TestDeliveryDedupeStore:
    @pytest.fixture
    def store(self, tmp_path: Path) -> DeliveryDedupeStore:
        return DeliveryDedupeStore(str(tmp_path / "dedupe.db"), window_seconds=60)

    def test_first_claim_succeeds(self, store: DeliveryDedupeStore) -> None:
        assert store.claim("evt_1", "ws_1", now=T0) is True

    def test_second_claim_inside_window_rejected(self, store: DeliveryDedupeStore) -> None:
        store.claim("evt_1", "ws_1", now=T0)
        assert store.claim("evt_1", "ws_1", now=T0 + 59) is False

    def test_rejected_claim_does_not_refresh_record(self, store: DeliveryDedupeStore) -> None:
        store.claim("evt_1", "ws_1", now=T0)
        store.claim("evt_1", "ws_1", now=T0 + 30)
        record = store.get("evt_1", "ws_1")
        assert record is not None
        assert record.processed_at == T0

    def test_claim_after_window_succeeds_and_refreshes(
        self, store: DeliveryDedupeStore,
    ) -> None:
        store.claim("evt_1", "ws_1", now=T0)
        assert store.claim("evt_1", "ws_1", now=T0 + 61) is True
        record = store.get("evt_1", "ws_1")
        assert record is not None
        assert record.processed_at == T0 + 61

    def test_key_includes_workspace(self, store: DeliveryDedupeStore) -> None:
        assert store.claim("evt_1", "ws_1", now=T0) is True
        assert store.claim("evt_1", "ws_2", now=T0) is True
        assert store.count() == 2

    def test_state_persists_across_instances(self, tmp_path: Path) -> None:
        db_path = str(tmp_path / "dedupe.db")
        first = DeliveryDedupeStore(db_path)
        first.claim("evt_1", "ws_1")
        first.close()
        second = DeliveryDedupeStore(db_path)
        assert second.claim("evt_1", "ws_1") is False

    def test_purge_expired(self, store: DeliveryDedupeStore) -> None:
        store.claim("old", "ws_1", now=T0)
        store.claim("new", "ws_1", now=T0 + 100)
        assert store.purge_expired(now=T0 + 120) == 1
        assert store.get("old", "ws_1") is None
        assert store.get("new", "ws_1") is not None

    def test_memory_database(self) -> None:
        store = DeliveryDedupeStore(":memory:")
        assert store.claim("evt", "ws") is True
        assert store.claim("evt", "ws") is False
        assert store.window_seconds == 86400

    def test_concurrent_claims_only_one_wins(self, store: DeliveryDedupeStore) -> None:
        results: list[bool] = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            results.append(store.claim("evt_race", "ws_1"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1
