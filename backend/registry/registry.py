"""
Device registry owned by the hub.

Reconciliation is a read-check-write over the record store, so it runs under a
single registry-wide lock: two responses for the same device can never both
see "not found" and both insert.
"""

import asyncio
import logging

from discovery.models import KnownPeer, ResponsePayload
from registry.models import PeerRecord, UpsertResult
from registry.store import MemoryRecordStore, RecordStore

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Known peers keyed by (name-or-brand, serial number)."""

    def __init__(self, store: RecordStore | None = None) -> None:
        self._store = store if store is not None else MemoryRecordStore()
        self._lock = asyncio.Lock()
        self._on_change: list = []  # callbacks: async def fn(event, record)

    def on_change(self, callback) -> None:
        """Register a callback for peer_inserted/peer_updated events."""
        self._on_change.append(callback)

    def _emit(self, event: str, record: PeerRecord) -> None:
        for cb in self._on_change:
            asyncio.ensure_future(cb(event, record))

    def _find(self, name: str, serial_number: str) -> PeerRecord | None:
        for record in self._store.scan():
            if record.name == name and record.serial_number == serial_number:
                return record
        return None

    async def find_by_identity(self, name: str, serial_number: str) -> PeerRecord | None:
        async with self._lock:
            return self._find(name, serial_number)

    async def upsert(self, response: ResponsePayload) -> UpsertResult:
        """Reconcile a valid response into a no-op, an address update or an insert."""
        async with self._lock:
            existing = self._find(*response.identity)
            if existing is None:
                record = self._store.insert(PeerRecord.from_response(response))
                result = UpsertResult.INSERTED
                logger.info(f"Registered device {record.name}/{record.serial_number} ({record.ip_address})")
            elif existing.ip_address == response.address:
                return UpsertResult.NOOP
            else:
                old_address = existing.ip_address
                existing.ip_address = response.address
                self._store.update(existing)
                record = existing
                result = UpsertResult.UPDATED
                logger.info(
                    f"Device {record.name}/{record.serial_number} moved "
                    f"{old_address} -> {record.ip_address}"
                )

        self._emit(f"peer_{result.value}", record)
        return result

    async def snapshot(self) -> list[PeerRecord]:
        async with self._lock:
            return self._store.scan()

    async def known_peers(self) -> list[KnownPeer]:
        """Identity and address of every registered device, for discovery requests."""
        return [record.to_known_peer() for record in await self.snapshot()]

    async def get(self, record_id: int) -> PeerRecord | None:
        async with self._lock:
            return next((r for r in self._store.scan() if r.id == record_id), None)

    async def set_state(self, record_id: int, state: str) -> bool:
        """Store the last polled state of a device. Returns False if unknown."""
        async with self._lock:
            record = next((r for r in self._store.scan() if r.id == record_id), None)
            if record is None:
                return False
            record.last_known_state = state
            self._store.update(record)
            return True
