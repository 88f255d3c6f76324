# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Duplicate / consistency validation for a batch of workflows.

``validate`` is a single pass that never raises on findings; ``enforce``
turns a failed report into ``ValidationFailedError`` for strict callers.
The same scan runs on raw source data and again before upload.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from .exceptions import ValidationFailedError
from .models import Workflow

logger = logging.getLogger("flowmigrate.validator")


@dataclass
class DuplicateGroup:
    key: str
    workflows: List[Workflow]

    def to_list(self) -> List[Dict[str, str]]:
        return [{"id": wf.id, "name": wf.name} for wf in self.workflows]


@dataclass(frozen=True)
class UnresolvedEdge:
    from_id: str
    to_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"from": self.from_id, "to": self.to_id}


@dataclass
class ValidationReport:
    duplicate_ids: List[DuplicateGroup] = field(default_factory=list)
    duplicate_names: List[DuplicateGroup] = field(default_factory=list)
    unresolved_references: List[UnresolvedEdge] = field(default_factory=list)
    total_workflows: int = 0

    @property
    def valid(self) -> bool:
        return not (
            self.duplicate_ids or self.duplicate_names or self.unresolved_references
        )

    def duplicate_ids_by_key(self) -> Dict[str, List[Workflow]]:
        return {group.key: group.workflows for group in self.duplicate_ids}

    def duplicate_names_by_key(self) -> Dict[str, List[Workflow]]:
        return {group.key: group.workflows for group in self.duplicate_names}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "duplicateIds": [group.to_list() for group in self.duplicate_ids],
            "duplicateNames": [group.to_list() for group in self.duplicate_names],
            "unresolvedReferences": [
                edge.to_dict() for edge in self.unresolved_references
            ],
        }


def validate(workflows: Iterable[Workflow], strict: bool = False) -> ValidationReport:
    """
    Scan a batch for id/name collisions and dangling call-references.

    Raises:
        ValidationFailedError: only when ``strict`` and the report is not valid
    """
    workflows = list(workflows)
    by_id: Dict[str, List[Workflow]] = {}
    by_name: Dict[str, List[Workflow]] = {}

    for workflow in workflows:
        by_id.setdefault(workflow.id, []).append(workflow)
        by_name.setdefault(workflow.name, []).append(workflow)

    report = ValidationReport(total_workflows=len(workflows))

    for wf_id, group in by_id.items():
        if len(group) > 1:
            report.duplicate_ids.append(DuplicateGroup(key=wf_id, workflows=group))

    for name, group in by_name.items():
        if len(group) > 1:
            report.duplicate_names.append(DuplicateGroup(key=name, workflows=group))

    seen = set()
    for workflow in workflows:
        for ref_id in workflow.call_references():
            edge = UnresolvedEdge(from_id=workflow.id, to_id=ref_id)
            if ref_id not in by_id and edge not in seen:
                seen.add(edge)
                report.unresolved_references.append(edge)

    if report.valid:
        logger.info(f"Validation passed for {len(workflows)} workflows")
    else:
        logger.warning(
            f"Validation found {len(report.duplicate_ids)} duplicate id groups, "
            f"{len(report.duplicate_names)} duplicate name groups, "
            f"{len(report.unresolved_references)} unresolved references"
        )

    if strict:
        enforce(report)
    return report


def enforce(report: ValidationReport) -> ValidationReport:
    """Raise ValidationFailedError if the report did not pass"""
    if not report.valid:
        raise ValidationFailedError(
            "Workflow batch failed validation",
            report=report,
            details={
                "duplicate_ids": len(report.duplicate_ids),
                "duplicate_names": len(report.duplicate_names),
                "unresolved_references": len(report.unresolved_references),
            },
        )
    return report
