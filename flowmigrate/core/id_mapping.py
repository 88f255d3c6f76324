# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
ID Mapping Store

Records which destination id the target instance assigned to each source
workflow. The table is persisted as JSON so an interrupted migration can be
resumed and audited::

    {
      "metadata": {"totalMappings": 2, "savedAt": "2025-10-01T14:30:00"},
      "mappings": {
        "old-1": {"newId": "new-9", "name": "Send Invoice", "timestamp": "..."}
      }
    }
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Union

from .exceptions import PersistenceError

logger = logging.getLogger("flowmigrate.id_mapping")


@dataclass(frozen=True)
class MappingEntry:
    old_id: str
    new_id: str
    name: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {"newId": self.new_id, "name": self.name, "timestamp": self.timestamp}


class IDMappingStore:
    """
    Flat table ``old_id -> (new_id, name)``.

    ``add`` on an already-mapped id overwrites it (last write wins); callers
    add each workflow once per run.
    """

    def __init__(self):
        self._entries: Dict[str, MappingEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, old_id: str) -> bool:
        return old_id in self._entries

    def __iter__(self) -> Iterator[MappingEntry]:
        return iter(list(self._entries.values()))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IDMappingStore):
            return NotImplemented
        return self.as_table() == other.as_table()

    def add(self, old_id: str, new_id: str, name: str) -> MappingEntry:
        existing = self._entries.get(old_id)
        if existing and existing.new_id != new_id:
            logger.warning(
                f"Remapping {old_id} ({name}): {existing.new_id} -> {new_id}"
            )

        entry = MappingEntry(
            old_id=old_id,
            new_id=new_id,
            name=name,
            timestamp=datetime.now().isoformat(),
        )
        self._entries[old_id] = entry
        logger.debug(f"Mapping added: {old_id} -> {new_id} ({name})")
        return entry

    def resolve(self, old_id: str) -> Optional[str]:
        """Destination id for ``old_id``, or None when unmapped"""
        entry = self._entries.get(old_id)
        return entry.new_id if entry else None

    def get(self, old_id: str) -> Optional[MappingEntry]:
        return self._entries.get(old_id)

    def new_ids(self) -> Set[str]:
        return {entry.new_id for entry in self._entries.values()}

    def missing(self, old_ids: Iterable[str]) -> List[str]:
        """Ids from ``old_ids`` that have no mapping"""
        return [old_id for old_id in old_ids if old_id not in self._entries]

    def as_table(self) -> Dict[str, Dict[str, str]]:
        """``{old_id: {"newId", "name"}}`` without timestamps"""
        return {
            old_id: {"newId": entry.new_id, "name": entry.name}
            for old_id, entry in self._entries.items()
        }

    def summary(self) -> List[Dict[str, str]]:
        """Rows sorted by workflow name, for display"""
        rows = [
            {"oldId": e.old_id, "newId": e.new_id, "name": e.name}
            for e in self._entries.values()
        ]
        return sorted(rows, key=lambda row: row["name"].lower())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def persist(self, path: Union[str, Path]) -> Path:
        """Write the full table atomically"""
        path = Path(path)
        data = {
            "metadata": {
                "totalMappings": len(self._entries),
                "savedAt": datetime.now().isoformat(),
            },
            "mappings": {old_id: e.to_dict() for old_id, e in self._entries.items()},
        }

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(
                f"Failed to save ID mappings: {e}", path=str(path), cause=e
            )

        logger.info(f"Saved {len(self._entries)} ID mappings to {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "IDMappingStore":
        """Read a persisted table; a missing file yields an empty store"""
        path = Path(path)
        store = cls()

        if not path.exists():
            logger.debug(f"No mapping file at {path}, starting empty")
            return store

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(
                f"Invalid mapping file: {e}", path=str(path), cause=e
            )

        if not isinstance(data, dict):
            raise PersistenceError("Mapping file must hold a JSON object", path=str(path))

        table = data.get("mappings") if isinstance(data.get("mappings"), dict) else data

        for old_id, raw in table.items():
            if not isinstance(raw, dict) or not raw.get("newId"):
                logger.warning(f"Skipping invalid mapping entry for {old_id}")
                continue
            store._entries[str(old_id)] = MappingEntry(
                old_id=str(old_id),
                new_id=str(raw["newId"]),
                name=str(raw.get("name") or raw.get("workflowName") or ""),
                timestamp=raw.get("timestamp") or datetime.now().isoformat(),
            )

        logger.info(f"Loaded {len(store)} ID mappings from {path}")
        return store
