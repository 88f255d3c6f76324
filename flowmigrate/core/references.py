# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Call-reference discovery inside workflow nodes.

n8n stores the target of an Execute Workflow / Tool Workflow node under a
``workflowId`` key, either as a plain string or as a resource locator::

    {"__rl": True, "mode": "list", "value": "abc123",
     "cachedResultName": "Send Invoice", "cachedResultUrl": "/workflow/abc123"}

The key may sit at any depth of the node, so every walker here descends
through dicts and lists exhaustively.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Tuple, Union

REFERENCE_KEY = "workflowId"

PathPart = Union[str, int]


@dataclass(frozen=True)
class CallReference:
    """One ``workflowId`` occurrence found in a node"""

    workflow_id: str
    path: Tuple[PathPart, ...]
    node_name: Optional[str] = None
    cached_name: Optional[str] = None

    @property
    def location(self) -> str:
        parts = []
        for part in self.path:
            if isinstance(part, int):
                parts.append(f"[{part}]")
            else:
                parts.append(f".{part}" if parts else part)
        return "".join(parts)


def is_static_id(value: Any) -> bool:
    """True for a literal identifier; expressions (``=...``) and blanks are dynamic"""
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, int):
        return True
    if not isinstance(value, str):
        return False
    value = value.strip()
    return bool(value) and not value.startswith("=")


def reference_value(value: Any) -> Optional[str]:
    """Identifier held by a ``workflowId`` value, or None if it is dynamic"""
    if isinstance(value, dict):
        value = value.get("value")
    if is_static_id(value):
        return str(value).strip()
    return None


def _walk(
    obj: Any, path: Tuple[PathPart, ...]
) -> Iterator[Tuple[Tuple[PathPart, ...], Any, Any]]:
    """Yield (path, container, key) for every ``workflowId`` key below obj"""
    if isinstance(obj, dict):
        for key, value in obj.items():
            if key == REFERENCE_KEY:
                yield path + (key,), obj, key
            if isinstance(value, (dict, list)):
                yield from _walk(value, path + (key,))
    elif isinstance(obj, list):
        for index, item in enumerate(obj):
            if isinstance(item, (dict, list)):
                yield from _walk(item, path + (index,))


def extract_references(nodes: List[Any]) -> List[CallReference]:
    """All static call-references in a node list"""
    found: List[CallReference] = []
    for index, node in enumerate(nodes or []):
        node_name = node.get("name") if isinstance(node, dict) else None
        for path, container, key in _walk(node, ("nodes", index)):
            raw = container[key]
            target = reference_value(raw)
            if target is None:
                continue
            cached = raw.get("cachedResultName") if isinstance(raw, dict) else None
            found.append(
                CallReference(
                    workflow_id=target,
                    path=path,
                    node_name=node_name,
                    cached_name=cached,
                )
            )
    return found


def rewrite_references(
    nodes: List[Any], replace: Callable[[str], Optional[str]]
) -> List[Tuple[CallReference, Optional[str]]]:
    """
    Rewrite every static call-reference in place.

    ``replace`` receives the current id and returns the new one, or None to
    leave it unchanged. Returns each reference visited with its replacement.
    """
    visited: List[Tuple[CallReference, Optional[str]]] = []
    for index, node in enumerate(nodes or []):
        node_name = node.get("name") if isinstance(node, dict) else None
        for path, container, key in _walk(node, ("nodes", index)):
            raw = container[key]
            current = reference_value(raw)
            if current is None:
                continue

            cached = raw.get("cachedResultName") if isinstance(raw, dict) else None
            ref = CallReference(
                workflow_id=current, path=path, node_name=node_name, cached_name=cached
            )
            new_id = replace(current)
            visited.append((ref, new_id))
            if new_id is None or new_id == current:
                continue

            if isinstance(raw, dict):
                raw["value"] = new_id
                url = raw.get("cachedResultUrl")
                if isinstance(url, str) and url.endswith(current):
                    raw["cachedResultUrl"] = url[: -len(current)] + new_id
            else:
                container[key] = new_id
    return visited
