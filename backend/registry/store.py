"""Record stores backing the device registry."""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from registry.models import PeerRecord

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Minimal insert/update/scan interface over PeerRecords."""

    @abstractmethod
    def insert(self, record: PeerRecord) -> PeerRecord:
        """Store a new record and return it with its assigned id."""

    @abstractmethod
    def update(self, record: PeerRecord) -> None:
        """Replace the stored record that has the same id."""

    @abstractmethod
    def scan(self) -> list[PeerRecord]:
        """Return copies of every stored record."""


class MemoryRecordStore(RecordStore):
    """Keeps records in a dict, lost on restart."""

    def __init__(self) -> None:
        self._records: dict[int, PeerRecord] = {}
        self._next_id = 1

    def insert(self, record: PeerRecord) -> PeerRecord:
        stored = record.model_copy(update={"id": self._next_id}, deep=True)
        self._records[stored.id] = stored
        self._next_id += 1
        return stored.model_copy(deep=True)

    def update(self, record: PeerRecord) -> None:
        if record.id not in self._records:
            raise KeyError(f"No record with id {record.id}")
        self._records[record.id] = record.model_copy(deep=True)

    def scan(self) -> list[PeerRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]


class JsonFileRecordStore(MemoryRecordStore):
    """Persists records to a single JSON file, rewritten on every change."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._store_path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self._store_path.exists():
            return

        try:
            data = json.loads(self._store_path.read_text())
        except Exception as e:
            logger.error(f"Failed to load device registry: {e}")
            return
        if not isinstance(data, list):
            logger.error(f"Device registry {self._store_path} is not a list, ignoring it")
            return

        for record_data in data:
            try:
                record = PeerRecord(**record_data)
            except Exception as e:
                logger.error(f"Skipping unreadable device record {record_data!r}: {e}")
                continue
            self._records[record.id] = record

        # Ids of skipped entries stay reserved so they are never handed out again
        ids = [r.get("id") for r in data if isinstance(r, dict) and isinstance(r.get("id"), int)]
        self._next_id = max([*self._records, *ids], default=0) + 1
        logger.info(f"Loaded {len(self._records)} devices from {self._store_path}")

    def _save(self) -> None:
        try:
            data = [record.model_dump() for record in self._records.values()]
            self._store_path.write_text(json.dumps(data, indent=2))
        except Exception as e:
            logger.error(f"Failed to save device registry: {e}")

    def insert(self, record: PeerRecord) -> PeerRecord:
        stored = super().insert(record)
        self._save()
        return stored

    def update(self, record: PeerRecord) -> None:
        super().update(record)
        self._save()
