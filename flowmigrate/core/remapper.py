# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Reference Remapper

Rewrites every call-reference in a workflow from source ids to destination
ids. The input workflow is never modified; a deep copy is returned.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from .exceptions import UnresolvedReferenceError
from .id_mapping import IDMappingStore
from .models import Workflow
from .references import rewrite_references

logger = logging.getLogger("flowmigrate.remapper")


@dataclass
class ReferenceChange:
    location: str
    node_name: str
    old_id: str
    new_id: str


@dataclass
class RemapResult:
    workflow: Workflow
    updated: List[ReferenceChange] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)
    already_remapped: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.updated)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow": self.workflow.name,
            "updated": [vars(change) for change in self.updated],
            "unresolved": list(self.unresolved),
            "alreadyRemapped": list(self.already_remapped),
        }


class ReferenceRemapper:
    """Applies an IDMappingStore to workflow payloads and keeps running totals"""

    def __init__(self, mapping: IDMappingStore, strict: bool = False):
        self.mapping = mapping
        self.strict = strict
        self.stats = {
            "workflows_processed": 0,
            "nodes_processed": 0,
            "references_updated": 0,
            "references_unresolved": 0,
        }

    def remap(self, workflow: Workflow) -> RemapResult:
        """
        Remap one workflow.

        Raises:
            UnresolvedReferenceError: in strict mode, if any reference has no mapping
        """
        updated = workflow.copy()
        result = RemapResult(workflow=updated)
        known_new_ids = self.mapping.new_ids()

        def replace(current: str):
            new_id = self.mapping.resolve(current)
            if new_id is None:
                if current in known_new_ids:
                    result.already_remapped.append(current)
                else:
                    result.unresolved.append(current)
            return new_id

        visited = rewrite_references(updated.nodes, replace)

        if result.unresolved and self.strict:
            raise UnresolvedReferenceError(
                f"Unresolved references in {workflow.name!r}: "
                f"{', '.join(result.unresolved)}",
                workflow_name=workflow.name,
                references=list(result.unresolved),
            )

        for ref, new_id in visited:
            if new_id is None or new_id == ref.workflow_id:
                continue
            result.updated.append(
                ReferenceChange(
                    location=ref.location,
                    node_name=ref.node_name or "",
                    old_id=ref.workflow_id,
                    new_id=new_id,
                )
            )
            logger.debug(f"  {workflow.name}: {ref.workflow_id} -> {new_id} at {ref.location}")

        for old_id in result.unresolved:
            logger.warning(f"  {workflow.name}: no mapping for referenced workflow {old_id}")

        self.stats["workflows_processed"] += 1
        self.stats["nodes_processed"] += updated.node_count
        self.stats["references_updated"] += len(result.updated)
        self.stats["references_unresolved"] += len(result.unresolved)
        return result

    def remap_batch(self, workflows: Iterable[Workflow]) -> List[RemapResult]:
        """Remap every workflow; in strict mode nothing is returned if one fails"""
        results = [self.remap(workflow) for workflow in workflows]
        logger.info(
            f"Remapped {self.stats['references_updated']} references in "
            f"{self.stats['workflows_processed']} workflows "
            f"({self.stats['references_unresolved']} unresolved)"
        )
        return results


def remap_workflow(
    workflow: Workflow, mapping: IDMappingStore, strict: bool = False
) -> RemapResult:
    """One-shot helper around ReferenceRemapper"""
    return ReferenceRemapper(mapping, strict=strict).remap(workflow)
