# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Upload History Store

Append-only log of workflow creation attempts. Persisted as JSON Lines so a
partial run can be re-read and appended to. There is no update or delete:
history is a log, not a cache.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .exceptions import PersistenceError

logger = logging.getLogger("flowmigrate.history")


class UploadStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class UploadRecord:
    name: str
    old_id: str
    new_id: Optional[str]
    status: UploadStatus
    timestamp: datetime
    error: Optional[str] = None

    @classmethod
    def create(
        cls,
        name: str,
        old_id: str,
        status: UploadStatus,
        new_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> "UploadRecord":
        return cls(
            name=name,
            old_id=old_id,
            new_id=new_id,
            status=status,
            timestamp=datetime.now(),
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "oldId": self.old_id,
            "newId": self.new_id,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "errorMessage": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadRecord":
        return cls(
            name=data["name"],
            old_id=str(data["oldId"]),
            new_id=str(data["newId"]) if data.get("newId") else None,
            status=UploadStatus(data["status"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            error=data.get("errorMessage"),
        )


class UploadHistoryStore:
    def __init__(self):
        self._records: List[UploadRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[UploadRecord]:
        return list(self._records)

    def add(self, record: UploadRecord) -> None:
        self._records.append(record)
        logger.debug(f"History: {record.name} {record.status.value}")

    def find_by_name(self, name: str) -> Optional[UploadRecord]:
        """Most recent record for ``name``"""
        for record in reversed(self._records):
            if record.name == name:
                return record
        return None

    def last(self, n: int = 3) -> List[UploadRecord]:
        """Newest ``n`` records, newest first"""
        if n < 1:
            raise ValueError("n must be at least 1")
        return list(reversed(self._records[-n:]))

    def summary(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in UploadStatus}
        for record in self._records:
            counts[record.status.value] += 1
        counts["total"] = len(self._records)
        return counts

    def persist(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        lines = "".join(json.dumps(r.to_dict()) + "\n" for r in self._records)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_text(lines, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(
                f"Failed to save upload history: {e}", path=str(path), cause=e
            )

        logger.info(f"Saved {len(self._records)} history records to {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "UploadHistoryStore":
        """Read a JSON Lines history file; a missing file yields an empty store"""
        path = Path(path)
        store = cls()

        if not path.exists():
            return store

        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(
                f"Failed to read upload history: {e}", path=str(path), cause=e
            )

        for line_no, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                store._records.append(UploadRecord.from_dict(json.loads(line)))
            except (ValueError, KeyError) as e:
                raise PersistenceError(
                    f"Invalid history record on line {line_no}: {e}",
                    path=str(path),
                    cause=e,
                )

        logger.info(f"Loaded {len(store)} history records from {path}")
        return store
