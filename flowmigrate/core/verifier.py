# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Migration Verifier

Compares the source workflows with what the destination actually holds
after the final upload pass. Four independent checks:

    workflow_count      originals vs destination snapshot size
    all_mapped          every original id has a mapping entry
    references          every call-reference points at a real destination id
    node_counts         per-workflow node totals survived transport
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from .exceptions import VerificationFailedError
from .id_mapping import IDMappingStore
from .models import Workflow
from .references import extract_references

logger = logging.getLogger("flowmigrate.verifier")

CHECK_WORKFLOW_COUNT = "workflow_count"
CHECK_ALL_MAPPED = "all_mapped"
CHECK_REFERENCES = "references"
CHECK_NODE_COUNTS = "node_counts"


@dataclass
class CheckResult:
    name: str
    passed: bool
    details: Dict[str, Any] = field(default_factory=dict)
    affected: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "details": self.details,
            "affected": list(self.affected),
        }


@dataclass
class VerificationResult:
    checks: Dict[str, CheckResult]

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks.values())

    @property
    def failing_checks(self) -> List[CheckResult]:
        return [check for check in self.checks.values() if not check.passed]

    @property
    def affected_workflows(self) -> List[str]:
        names: Dict[str, None] = {}
        for check in self.failing_checks:
            for name in check.affected:
                names.setdefault(name, None)
        return list(names)

    def raise_for_failure(self) -> "VerificationResult":
        if not self.passed:
            failing = ", ".join(check.name for check in self.failing_checks)
            raise VerificationFailedError(
                f"Migration verification failed: {failing}",
                result=self,
                details={
                    "failingChecks": [check.name for check in self.failing_checks],
                    "affected": self.affected_workflows,
                },
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "checks": {name: check.to_dict() for name, check in self.checks.items()},
            "failingChecks": [check.name for check in self.failing_checks],
            "affectedWorkflows": self.affected_workflows,
        }


class MigrationVerifier:
    """Stateless integrity checks over (originals, mapping, destination snapshot)"""

    def verify(
        self,
        original_workflows: Iterable[Workflow],
        id_mapping: IDMappingStore,
        destination_snapshot: Iterable[Workflow],
        destination_ids: Optional[Set[str]] = None,
    ) -> VerificationResult:
        """
        Run all four checks.

        ``destination_ids`` widens the set of ids a reference may point at,
        e.g. to pre-existing destination workflows outside the batch.
        """
        originals = list(original_workflows)
        snapshot = {wf.id: wf for wf in destination_snapshot}
        known_ids = set(snapshot) | set(destination_ids or ())

        checks = {
            CHECK_WORKFLOW_COUNT: self.check_workflow_count(originals, id_mapping, snapshot),
            CHECK_ALL_MAPPED: self.check_all_mapped(originals, id_mapping),
            CHECK_REFERENCES: self.check_references(snapshot, known_ids),
            CHECK_NODE_COUNTS: self.check_node_counts(originals, id_mapping, snapshot),
        }
        result = VerificationResult(checks=checks)

        for check in checks.values():
            if check.passed:
                logger.info(f"  [PASS] {check.name}")
            else:
                logger.error(f"  [FAIL] {check.name}: {', '.join(check.affected) or check.details}")

        logger.info(
            f"Verification {'PASSED' if result.passed else 'FAILED'} "
            f"({len(checks) - len(result.failing_checks)}/{len(checks)} checks)"
        )
        return result

    def check_workflow_count(
        self,
        originals: List[Workflow],
        id_mapping: IDMappingStore,
        snapshot: Dict[str, Workflow],
    ) -> CheckResult:
        expected = len(originals)
        actual = len(snapshot)
        absent = [
            wf.name for wf in originals if id_mapping.resolve(wf.id) not in snapshot
        ]
        return CheckResult(
            name=CHECK_WORKFLOW_COUNT,
            passed=expected == actual,
            details={"expected": expected, "actual": actual},
            affected=absent if expected != actual else [],
        )

    def check_all_mapped(
        self, originals: List[Workflow], id_mapping: IDMappingStore
    ) -> CheckResult:
        missing = [wf for wf in originals if id_mapping.resolve(wf.id) is None]
        return CheckResult(
            name=CHECK_ALL_MAPPED,
            passed=not missing,
            details={"missingIds": [wf.id for wf in missing]},
            affected=[wf.name for wf in missing],
        )

    def check_references(
        self, snapshot: Dict[str, Workflow], known_ids: Set[str]
    ) -> CheckResult:
        broken: List[Dict[str, Any]] = []
        affected: List[str] = []

        for workflow in snapshot.values():
            dangling = [
                ref
                for ref in extract_references(workflow.nodes)
                if ref.workflow_id not in known_ids
            ]
            if not dangling:
                continue
            affected.append(workflow.name)
            for ref in dangling:
                broken.append(
                    {
                        "workflow": workflow.name,
                        "node": ref.node_name,
                        "location": ref.location,
                        "referencedId": ref.workflow_id,
                        "referencedName": ref.cached_name,
                    }
                )

        return CheckResult(
            name=CHECK_REFERENCES,
            passed=not broken,
            details={"brokenReferences": broken},
            affected=affected,
        )

    def check_node_counts(
        self,
        originals: List[Workflow],
        id_mapping: IDMappingStore,
        snapshot: Dict[str, Workflow],
    ) -> CheckResult:
        mismatches: List[Dict[str, Any]] = []

        for original in originals:
            new_id = id_mapping.resolve(original.id)
            created = snapshot.get(new_id) if new_id else None
            if created is None:
                # Reported by the mapping / count checks
                continue
            if created.node_count != original.node_count:
                mismatches.append(
                    {
                        "workflow": original.name,
                        "originalNodes": original.node_count,
                        "destinationNodes": created.node_count,
                    }
                )

        return CheckResult(
            name=CHECK_NODE_COUNTS,
            passed=not mismatches,
            details={"mismatches": mismatches},
            affected=[m["workflow"] for m in mismatches],
        )


def verify(
    original_workflows: Iterable[Workflow],
    id_mapping: IDMappingStore,
    destination_snapshot: Iterable[Workflow],
) -> VerificationResult:
    return MigrationVerifier().verify(original_workflows, id_mapping, destination_snapshot)
