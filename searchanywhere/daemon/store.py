"""Append-only history log.

Every upsert or delete is appended as one JSON line. The live state is rebuilt
by replaying the log on start and the log is compacted when it holds more than
twice the number of live records.
"""

import asyncio
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
from loguru import logger

from .models import ItemKind, UnixTimeMs, now_ms
from .streams import StateStream


@dataclass(frozen=True)
class HistoryRecord:
    """A stored history row, keyed by (kind, key)."""
    kind: ItemKind
    key: str
    updated_at_ms: UnixTimeMs
    payload: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_wal(self, op: str) -> Dict[str, Any]:
        return {
            "op": op,
            "kind": self.kind.value,
            "key": self.key,
            "ts": self.updated_at_ms,
            "payload": self.payload,
        }


class HistoryStore:
    """
    Keyed "most recent use" store.

    Same-key upserts overwrite. Each kind keeps at most ``max_entries_per_kind``
    records, the least recently used are evicted. Each kind's records are
    exposed as a ``StateStream`` ordered most recent first.
    """

    def __init__(self, log_path: Path, max_entries_per_kind: int = 200):
        self.log_path = log_path
        self.max_entries_per_kind = max_entries_per_kind
        self._records: Dict[Tuple[ItemKind, str], HistoryRecord] = {}
        self._streams: Dict[ItemKind, StateStream[List[HistoryRecord]]] = {
            kind: StateStream([]) for kind in ItemKind
        }
        self._lock = asyncio.Lock()
        self._log_lines = 0

    async def initialize(self) -> None:
        """Replay the log into memory."""
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        if self.log_path.exists():
            await self._replay()
        for kind in ItemKind:
            self._publish(kind)
        async with self._lock:
            await self._compact_if_needed()
        logger.info(f"History store loaded {len(self._records)} entries from {self.log_path}")

    def history(self, kind: ItemKind) -> StateStream[List[HistoryRecord]]:
        return self._streams[kind]

    def entries(self, kind: ItemKind) -> List[HistoryRecord]:
        return self._streams[kind].value

    def get(self, kind: ItemKind, key: str) -> Optional[HistoryRecord]:
        return self._records.get((kind, key))

    async def upsert(self, kind: ItemKind, key: str, payload: Dict[str, Any],
                     updated_at_ms: Optional[UnixTimeMs] = None) -> HistoryRecord:
        record = HistoryRecord(
            kind=kind,
            key=key,
            updated_at_ms=updated_at_ms if updated_at_ms is not None else now_ms(),
            payload=payload,
        )
        async with self._lock:
            evicted = self._overflow(kind, record)
            await self._append([record.to_wal("upsert")] + [r.to_wal("delete") for r in evicted])

            # Memory only follows the log once the write went through
            self._records[(kind, key)] = record
            for old in evicted:
                del self._records[(kind, old.key)]
                logger.debug(f"Evicted {kind.value} history entry: {old.key}")
            self._publish(kind)
            await self._compact_if_needed()
        return record

    async def delete(self, kind: ItemKind, key: str) -> bool:
        async with self._lock:
            record = self._records.get((kind, key))
            if record is None:
                return False
            await self._append([record.to_wal("delete")])

            del self._records[(kind, key)]
            self._publish(kind)
            await self._compact_if_needed()
        return True

    def _sorted(self, kind: ItemKind) -> List[HistoryRecord]:
        return sorted(
            (r for r in self._records.values() if r.kind is kind),
            key=lambda r: r.updated_at_ms,
            reverse=True,
        )

    def _overflow(self, kind: ItemKind, incoming: HistoryRecord) -> List[HistoryRecord]:
        """Records that would fall beyond the cap once ``incoming`` is stored."""
        records = [r for r in self._sorted(kind) if r.key != incoming.key]
        records.append(incoming)
        records.sort(key=lambda r: r.updated_at_ms, reverse=True)
        return records[self.max_entries_per_kind:]

    def _evict(self, kind: ItemKind) -> None:
        for record in self._sorted(kind)[self.max_entries_per_kind:]:
            del self._records[(kind, record.key)]

    def _publish(self, kind: ItemKind) -> None:
        self._streams[kind].set(self._sorted(kind))

    async def _append(self, wal_records: List[Dict[str, Any]]) -> None:
        async with aiofiles.open(self.log_path, "a") as f:
            for wal_record in wal_records:
                await f.write(json.dumps(wal_record) + "\n")
            await f.flush()
        self._log_lines += len(wal_records)

    async def _replay(self) -> None:
        async with aiofiles.open(self.log_path, "r") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                self._log_lines += 1
                try:
                    data = json.loads(line)
                    kind = ItemKind(data["kind"])
                    key = data["key"]
                    updated_at = int(data.get("ts", 0))
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Skipping corrupt history record: {e}")
                    continue

                if data.get("op") == "delete":
                    self._records.pop((kind, key), None)
                else:
                    self._records[(kind, key)] = HistoryRecord(
                        kind=kind,
                        key=key,
                        updated_at_ms=updated_at,
                        payload=data.get("payload") or {},
                    )
        for kind in ItemKind:
            self._evict(kind)

    async def _compact_if_needed(self) -> None:
        if self._log_lines > 2 * max(len(self._records), 1):
            await self._compact()

    async def _compact(self) -> None:
        """Rewrite the log with only the live records; callers hold the lock."""
        tmp_path = self.log_path.with_suffix(self.log_path.suffix + ".tmp")
        records = sorted(self._records.values(), key=lambda r: r.updated_at_ms)
        async with aiofiles.open(tmp_path, "w") as f:
            for record in records:
                await f.write(json.dumps(record.to_wal("upsert")) + "\n")
            await f.flush()
        os.replace(tmp_path, self.log_path)
        logger.debug(f"Compacted history log from {self._log_lines} to {len(records)} lines")
        self._log_lines = len(records)
