# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Workflow model shared by every migration component.

Payloads come straight from the n8n REST API (or from JSON exports of it),
so the model keeps unknown top-level fields in ``extra`` and hands them back
untouched from ``to_dict()``.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .references import extract_references

# Fields the n8n public API accepts on create/update
UPLOAD_FIELDS = ("name", "nodes", "connections", "settings", "staticData")

_KNOWN_FIELDS = {
    "id",
    "name",
    "nodes",
    "connections",
    "settings",
    "staticData",
    "tags",
    "active",
}


@dataclass
class Workflow:
    """A named automation definition: nodes, connections, call-references."""

    id: str
    name: str
    nodes: List[Dict[str, Any]] = field(default_factory=list)
    connections: Dict[str, Any] = field(default_factory=dict)
    settings: Optional[Dict[str, Any]] = None
    static_data: Optional[Any] = None
    tags: List[Any] = field(default_factory=list)
    active: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workflow":
        """Build a Workflow from an API/export payload"""
        if "id" not in data or data["id"] in (None, ""):
            raise ValueError(f"Workflow payload has no id (name: {data.get('name')!r})")
        if not data.get("name"):
            raise ValueError(f"Workflow {data['id']!r} has no name")

        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            nodes=copy.deepcopy(data.get("nodes") or []),
            connections=copy.deepcopy(data.get("connections") or {}),
            settings=copy.deepcopy(data.get("settings")),
            static_data=copy.deepcopy(data.get("staticData")),
            tags=copy.deepcopy(data.get("tags") or []),
            active=bool(data.get("active", False)),
            extra={k: copy.deepcopy(v) for k, v in data.items() if k not in _KNOWN_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = dict(copy.deepcopy(self.extra))
        result.update(
            {
                "id": self.id,
                "name": self.name,
                "nodes": copy.deepcopy(self.nodes),
                "connections": copy.deepcopy(self.connections),
                "settings": copy.deepcopy(self.settings),
                "staticData": copy.deepcopy(self.static_data),
                "tags": copy.deepcopy(self.tags),
                "active": self.active,
            }
        )
        return result

    def to_upload_payload(self) -> Dict[str, Any]:
        """Payload for create/update calls, without read-only or empty fields"""
        full = self.to_dict()
        return {key: full[key] for key in UPLOAD_FIELDS if full.get(key) is not None}

    def copy(self) -> "Workflow":
        return copy.deepcopy(self)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def tag_names(self) -> List[str]:
        # tags are either plain strings or ``{"id", "name"}`` objects
        return [
            tag.get("name", "") if isinstance(tag, dict) else str(tag) for tag in self.tags
        ]

    def has_tag(self, tag: str) -> bool:
        """Case-insensitive tag match"""
        wanted = tag.lower()
        return any(name.lower() == wanted for name in self.tag_names)

    def call_references(self) -> List[str]:
        """Referenced workflow ids, deduplicated, in first-seen order"""
        seen: Dict[str, None] = {}
        for ref in extract_references(self.nodes):
            seen.setdefault(ref.workflow_id, None)
        return list(seen)

    def __repr__(self) -> str:
        return f"Workflow(id={self.id!r}, name={self.name!r}, nodes={self.node_count})"
