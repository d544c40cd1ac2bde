# storage.py
# JSON file storage for records. One file per collection, guarded by a
# process-wide lock so read-modify-write cycles don't interleave.

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from . import models
from .exceptions import NotFoundError

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=models.Record)

COLLECTIONS: Dict[str, Type[models.Record]] = {
    "users": models.User,
    "rfps": models.RFP,
    "vendors": models.Vendor,
    "sent_rfps": models.SentDispatch,
    "proposals": models.Proposal,
}


def _matches(row: Dict[str, Any], where: Dict[str, Any]) -> bool:
    for field, expected in where.items():
        value = row.get(field)
        if isinstance(expected, str) and isinstance(value, str) and field.endswith("email"):
            if value.lower() != expected.lower():
                return False
        elif value != expected:
            return False
    return True


class JsonStore:
    """
    Record store over JSON files in ``data_dir``.

    Email-like fields (names ending in ``email``) compare case-insensitively
    in lookups, matching how vendor contact addresses are treated.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self.files = {name: self.data_dir / f"{name}.json" for name in COLLECTIONS}
        for f in self.files.values():
            if not f.exists():
                f.write_text("[]")

    # --- raw file access ---

    def read_json(self, collection: str) -> List[Dict[str, Any]]:
        p = self.files[collection]
        try:
            return json.loads(p.read_text())
        except json.JSONDecodeError:
            logger.error("Collection file %s is corrupt; treating as empty", p)
            return []

    def write_json(self, collection: str, rows: List[Dict[str, Any]]) -> None:
        p = self.files[collection]
        tmp = p.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(rows, indent=2, default=str))
        tmp.replace(p)

    def _load(self, collection: str, row: Dict[str, Any]) -> models.Record:
        return COLLECTIONS[collection].model_validate(row)

    # --- CRUD ---

    def insert(self, collection: str, record: R) -> R:
        with self._lock:
            rows = self.read_json(collection)
            rows.append(record.model_dump(mode="json"))
            self.write_json(collection, rows)
        return record

    def get(self, collection: str, record_id: str) -> Optional[models.Record]:
        return self.find_first(collection, id=record_id)

    def require(self, collection: str, record_id: str) -> models.Record:
        record = self.get(collection, record_id)
        if record is None:
            raise NotFoundError(f"{collection[:-1]} {record_id} not found", resource=collection)
        return record

    def find_first(self, collection: str, **where) -> Optional[models.Record]:
        with self._lock:
            rows = self.read_json(collection)
        for row in rows:
            if _matches(row, where):
                return self._load(collection, row)
        return None

    def find_all(self, collection: str, **where) -> List[models.Record]:
        with self._lock:
            rows = self.read_json(collection)
        return [self._load(collection, row) for row in rows if _matches(row, where)]

    def find_latest(self, collection: str, **where) -> Optional[models.Record]:
        """Most recently created match, by ``created_at``."""
        latest = None
        for record in self.find_all(collection, **where):
            # ties go to the later insert
            if latest is None or record.created_at >= latest.created_at:
                latest = record
        return latest

    def update(self, collection: str, record_id: str, **changes) -> models.Record:
        with self._lock:
            rows = self.read_json(collection)
            for i, row in enumerate(rows):
                if row.get("id") == record_id:
                    merged = dict(row)
                    merged.update(changes)
                    record = self._load(collection, merged)
                    rows[i] = record.model_dump(mode="json")
                    self.write_json(collection, rows)
                    return record
        raise NotFoundError(f"{collection[:-1]} {record_id} not found", resource=collection)

    def update_where(self, collection: str, record_id: str,
                     predicate: Callable[[models.Record], bool], **changes) -> Optional[models.Record]:
        """Apply ``changes`` only if the current record satisfies ``predicate``."""
        with self._lock:
            record = self.require(collection, record_id)
            if not predicate(record):
                return None
            return self.update(collection, record_id, **changes)

    def get_or_create(self, collection: str, where: Dict[str, Any],
                      factory: Callable[[], R]) -> Tuple[R, bool]:
        """
        Idempotent upsert keyed on ``where``. The lookup and the insert happen
        under one lock, so two callers racing on the same key get the same row.
        """
        with self._lock:
            existing = self.find_first(collection, **where)
            if existing is not None:
                return existing, False
            return self.insert(collection, factory()), True
