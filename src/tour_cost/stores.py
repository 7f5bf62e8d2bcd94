"""Document stores for tours and master data.

Tours are stored whole, keyed by their sanitized tour code. Every write pushes
a full snapshot to subscribers, which is how other sessions see changes.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

import yaml

from tour_cost.core import sanitize_tour_code, utc_now
from tour_cost.models import MasterData, Tour

logger = logging.getLogger(__name__)

TourListener = Callable[[List[Tour]], None]
MasterDataListener = Callable[[MasterData], None]
Unsubscribe = Callable[[], None]

DEFAULT_SEED_PATH = Path(__file__).parent / "data" / "master_data.yaml"


class StoreError(RuntimeError):
    """Raised when a store cannot complete a read or write."""


class TourStore(Protocol):
    def save(self, tour: Tour) -> None:
        ...

    def delete(self, code: str) -> None:
        ...

    def subscribe(self, listener: TourListener) -> Unsubscribe:
        ...

    def fetch_all(self) -> List[Tour]:
        ...


class MasterDataStore(Protocol):
    def load(self) -> MasterData:
        ...

    def save(self, master_data: MasterData) -> None:
        ...

    def subscribe(self, listener: MasterDataListener) -> Unsubscribe:
        ...


class _ListenerSet:
    def __init__(self) -> None:
        self._listeners: list[Callable] = []

    def add(self, listener: Callable) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, payload: object) -> None:
        for listener in list(self._listeners):
            listener(payload)


# -----------------------------
# In-memory stores
# -----------------------------


class InMemoryTourStore:
    """Store useful for tests and local development."""

    def __init__(self) -> None:
        self._documents: Dict[str, dict] = {}
        self._listeners = _ListenerSet()

    def save(self, tour: Tour) -> None:
        self._documents[sanitize_tour_code(tour.general.code)] = tour.to_document()
        self._listeners.notify(self.fetch_all())

    def delete(self, code: str) -> None:
        self._documents.pop(sanitize_tour_code(code), None)
        self._listeners.notify(self.fetch_all())

    def subscribe(self, listener: TourListener) -> Unsubscribe:
        return self._listeners.add(listener)

    def fetch_all(self) -> List[Tour]:
        return [Tour.model_validate(doc) for doc in self._documents.values()]

    def keys(self) -> List[str]:
        return list(self._documents)


class InMemoryMasterDataStore:
    def __init__(self, master_data: Optional[MasterData] = None) -> None:
        self._master_data = master_data or MasterData()
        self._listeners = _ListenerSet()

    def load(self) -> MasterData:
        return self._master_data.model_copy(deep=True)

    def save(self, master_data: MasterData) -> None:
        self._master_data = master_data.model_copy(deep=True)
        self._listeners.notify(self.load())

    def subscribe(self, listener: MasterDataListener) -> Unsubscribe:
        return self._listeners.add(listener)


# -----------------------------
# SQLite stores
# -----------------------------


class SqliteTourStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._listeners = _ListenerSet()

    def save(self, tour: Tour) -> None:
        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT INTO tour_document(code_key, tour_id, payload, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(code_key)
                    DO UPDATE SET tour_id = excluded.tour_id, payload = excluded.payload,
                                  updated_at = excluded.updated_at
                    """,
                    (
                        sanitize_tour_code(tour.general.code),
                        tour.id,
                        json.dumps(tour.to_document(), ensure_ascii=False),
                        utc_now(),
                    ),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Could not save tour {tour.general.code!r}: {exc}") from exc
        self._listeners.notify(self.fetch_all())

    def delete(self, code: str) -> None:
        try:
            with self.conn:
                self.conn.execute("DELETE FROM tour_document WHERE code_key = ?", (sanitize_tour_code(code),))
        except sqlite3.Error as exc:
            raise StoreError(f"Could not delete tour {code!r}: {exc}") from exc
        self._listeners.notify(self.fetch_all())

    def subscribe(self, listener: TourListener) -> Unsubscribe:
        return self._listeners.add(listener)

    def fetch_all(self) -> List[Tour]:
        try:
            rows = self.conn.execute("SELECT payload FROM tour_document ORDER BY updated_at").fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not read tours: {exc}") from exc
        return [Tour.model_validate(json.loads(row["payload"])) for row in rows]


class SqliteMasterDataStore:
    def __init__(self, conn: sqlite3.Connection, seed: Optional[MasterData] = None):
        self.conn = conn
        self.seed = seed or MasterData()
        self._listeners = _ListenerSet()

    def load(self) -> MasterData:
        try:
            row = self.conn.execute("SELECT payload FROM master_data_document WHERE id = 1").fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not read master data: {exc}") from exc
        if row is None:
            return self.seed.model_copy(deep=True)
        return MasterData.model_validate(json.loads(row["payload"]))

    def save(self, master_data: MasterData) -> None:
        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT INTO master_data_document(id, payload, updated_at) VALUES (1, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
                    """,
                    (json.dumps(master_data.to_document(), ensure_ascii=False), utc_now()),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Could not save master data: {exc}") from exc
        self._listeners.notify(self.load())

    def subscribe(self, listener: MasterDataListener) -> Unsubscribe:
        return self._listeners.add(listener)


def load_master_data_seed(path: Path | str = DEFAULT_SEED_PATH) -> MasterData:
    with Path(path).open("r", encoding="utf-8") as seed_file:
        loaded = yaml.safe_load(seed_file)

    if not isinstance(loaded, dict):
        msg = f"Master data seed must contain a dictionary at root: {path}"
        raise ValueError(msg)

    master_data = MasterData.model_validate(loaded)
    logger.debug(
        "Loaded master data seed from %s: %d services, %d guides, %d per-diem rates",
        path,
        len(master_data.services),
        len(master_data.guides),
        len(master_data.per_diem_rates),
    )
    return master_data
