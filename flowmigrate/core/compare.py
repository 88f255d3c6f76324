# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Local export vs destination instance, matched by workflow name.

    new          no destination workflow carries the name
    modified     same name, but a different id or node count
    identical    same name, same id, same node count
    target_only  destination workflows with no local counterpart
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .models import Workflow

logger = logging.getLogger("flowmigrate.compare")


@dataclass
class ComparisonEntry:
    name: str
    local_id: Optional[str] = None
    target_id: Optional[str] = None
    local_nodes: Optional[int] = None
    target_nodes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "localId": self.local_id,
            "targetId": self.target_id,
            "localNodes": self.local_nodes,
            "targetNodes": self.target_nodes,
        }


@dataclass
class ComparisonReport:
    local_total: int = 0
    target_total: int = 0
    new: List[ComparisonEntry] = field(default_factory=list)
    modified: List[ComparisonEntry] = field(default_factory=list)
    identical: List[ComparisonEntry] = field(default_factory=list)
    target_only: List[ComparisonEntry] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        """Every local workflow already exists unchanged on the destination"""
        return not (self.new or self.modified)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inSync": self.in_sync,
            "summary": {
                "local": self.local_total,
                "target": self.target_total,
                "new": len(self.new),
                "modified": len(self.modified),
                "identical": len(self.identical),
                "targetOnly": len(self.target_only),
            },
            "new": [entry.to_dict() for entry in self.new],
            "modified": [entry.to_dict() for entry in self.modified],
            "identical": [entry.to_dict() for entry in self.identical],
            "targetOnly": [entry.to_dict() for entry in self.target_only],
        }


def compare_workflows(
    local: Iterable[Workflow], target: Iterable[Workflow]
) -> ComparisonReport:
    """
    Diff a local export against the workflows listed on the destination.

    When the destination holds several workflows with one name, the last
    listed wins.
    """
    local = list(local)
    target = list(target)
    by_name: Dict[str, Workflow] = {wf.name: wf for wf in target}
    local_names = {wf.name for wf in local}

    report = ComparisonReport(local_total=len(local), target_total=len(target))

    for workflow in local:
        match = by_name.get(workflow.name)
        entry = ComparisonEntry(
            name=workflow.name, local_id=workflow.id, local_nodes=workflow.node_count
        )
        if match is None:
            report.new.append(entry)
            continue

        entry.target_id = match.id
        entry.target_nodes = match.node_count
        if match.id == workflow.id and match.node_count == workflow.node_count:
            report.identical.append(entry)
        else:
            report.modified.append(entry)

    for workflow in target:
        if workflow.name not in local_names:
            report.target_only.append(
                ComparisonEntry(
                    name=workflow.name,
                    target_id=workflow.id,
                    target_nodes=workflow.node_count,
                )
            )

    logger.info(
        f"Compared {len(local)} local with {len(target)} destination workflows: "
        f"{len(report.new)} new, {len(report.modified)} modified, "
        f"{len(report.identical)} identical"
    )
    return report
