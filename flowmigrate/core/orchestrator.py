# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Transfer Orchestrator

Drives one migration run as an explicit state machine:

    Idle -> Validating -> BuildingGraph -> UploadingInitial -> Remapping
         -> UploadingFinal -> Verifying -> Done
    (Failed is reachable from every non-terminal state;
     dry-run goes BuildingGraph -> Done)

Destination ids are unknown until creation, so every workflow is created
first, then all call-references are rewritten with the completed mapping,
then every workflow is overwritten with its remapped payload. Creation and
update calls run concurrently, bounded by a semaphore; each phase is a hard
barrier for the next.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .events import Event, EventBus, EventType
from .exceptions import (
    InvalidStateTransitionError,
    MigrationError,
    PhaseAbortedError,
    VerificationFailedError,
)
from .graph import WorkflowGraph, build_graph
from .history import UploadHistoryStore, UploadRecord, UploadStatus
from .id_mapping import IDMappingStore
from .models import Workflow
from .remapper import ReferenceRemapper, RemapResult
from .transport.base import WorkflowTransport
from .validator import ValidationReport, enforce, validate
from .verifier import MigrationVerifier, VerificationResult

logger = logging.getLogger("flowmigrate.orchestrator")


class TransferState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    BUILDING_GRAPH = "building_graph"
    UPLOADING_INITIAL = "uploading_initial"
    REMAPPING = "remapping"
    UPLOADING_FINAL = "uploading_final"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


class TransferOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"


class TransferStateMachine:
    """Legal state transitions for a transfer run"""

    TRANSITIONS: Dict[TransferState, Set[TransferState]] = {
        TransferState.IDLE: {TransferState.VALIDATING, TransferState.FAILED},
        TransferState.VALIDATING: {TransferState.BUILDING_GRAPH, TransferState.FAILED},
        TransferState.BUILDING_GRAPH: {
            TransferState.UPLOADING_INITIAL,
            TransferState.DONE,
            TransferState.FAILED,
        },
        TransferState.UPLOADING_INITIAL: {TransferState.REMAPPING, TransferState.FAILED},
        TransferState.REMAPPING: {TransferState.UPLOADING_FINAL, TransferState.FAILED},
        TransferState.UPLOADING_FINAL: {
            TransferState.VERIFYING,
            TransferState.DONE,
            TransferState.FAILED,
        },
        TransferState.VERIFYING: {TransferState.DONE, TransferState.FAILED},
        TransferState.DONE: set(),
        TransferState.FAILED: set(),
    }

    TERMINAL_STATES = {TransferState.DONE, TransferState.FAILED}

    @classmethod
    def can_transition(cls, from_state: TransferState, to_state: TransferState) -> bool:
        return to_state in cls.TRANSITIONS.get(from_state, set())

    @classmethod
    def validate_transition(
        cls, from_state: TransferState, to_state: TransferState
    ) -> None:
        if not cls.can_transition(from_state, to_state):
            raise InvalidStateTransitionError(
                f"Invalid state transition: {from_state.value} -> {to_state.value}"
            )

    @classmethod
    def is_terminal(cls, state: TransferState) -> bool:
        return state in cls.TERMINAL_STATES


@dataclass
class TransferOptions:
    dry_run: bool = False
    skip_errors: bool = True
    strict_validation: bool = True
    strict_references: bool = False
    concurrency: int = 5
    resume: bool = True
    skip_existing: bool = False
    verify: bool = True

    def __post_init__(self):
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")


@dataclass
class PlannedOperation:
    action: str
    workflow_id: str
    name: str
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"action": self.action, "id": self.workflow_id, "name": self.name}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class TransferResult:
    state: TransferState
    dry_run: bool
    total: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    aborted: int = 0
    updated: int = 0
    duration_seconds: float = 0.0
    order: List[str] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)
    operations: List[PlannedOperation] = field(default_factory=list)
    validation: Optional[ValidationReport] = None
    verification: Optional[VerificationResult] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def migrated(self) -> int:
        return self.created + self.skipped

    @property
    def outcome(self) -> TransferOutcome:
        """
        success          run finished, nothing failed, verification passed
        partial_failure  something reached the destination but not everything
        failure          aborted before migrating anything, nothing made it,
                         or verification failed
        """
        if self.verification is not None and not self.verification.passed:
            return TransferOutcome.FAILURE
        if self.state == TransferState.DONE and self.failed == 0 and not self.errors:
            return TransferOutcome.SUCCESS
        if self.dry_run or self.migrated == 0:
            return TransferOutcome.FAILURE
        return TransferOutcome.PARTIAL_FAILURE

    @property
    def exit_code(self) -> int:
        return {
            TransferOutcome.SUCCESS: 0,
            TransferOutcome.FAILURE: 1,
            TransferOutcome.PARTIAL_FAILURE: 2,
        }[self.outcome]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "outcome": self.outcome.value,
            "dryRun": self.dry_run,
            "total": self.total,
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "aborted": self.aborted,
            "updated": self.updated,
            "durationSeconds": round(self.duration_seconds, 3),
            "order": list(self.order),
            "cycles": [list(group) for group in self.cycles],
            "operations": [op.to_dict() for op in self.operations],
            "validation": self.validation.to_dict() if self.validation else None,
            "verification": self.verification.to_dict() if self.verification else None,
            "errors": list(self.errors),
        }


class TransferOrchestrator:
    """
    Owns one migration run against a destination transport.

    The mapping and history stores are shared with the caller so a run can
    start from a previous run's persisted state. When ``mapping_path`` or
    ``history_path`` are given, the stores are written after each network
    phase.
    """

    def __init__(
        self,
        destination: WorkflowTransport,
        mapping: Optional[IDMappingStore] = None,
        history: Optional[UploadHistoryStore] = None,
        event_bus: Optional[EventBus] = None,
        mapping_path: Optional[Path] = None,
        history_path: Optional[Path] = None,
    ):
        self.destination = destination
        self.mapping = mapping if mapping is not None else IDMappingStore()
        self.history = history if history is not None else UploadHistoryStore()
        self.event_bus = event_bus or EventBus()
        self.mapping_path = mapping_path
        self.history_path = history_path
        self.verifier = MigrationVerifier()

        self.state = TransferState.IDLE
        self.graph: Optional[WorkflowGraph] = None
        self.remapped: Dict[str, RemapResult] = {}

    async def _transition(self, new_state: TransferState) -> None:
        TransferStateMachine.validate_transition(self.state, new_state)
        previous = self.state
        self.state = new_state
        logger.info(f"State: {previous.value} -> {new_state.value}")
        await self.event_bus.emit(
            Event(
                EventType.STATE_CHANGED,
                {"from": previous.value, "to": new_state.value},
            )
        )

    async def transfer(
        self,
        workflows: List[Workflow],
        options: Optional[TransferOptions] = None,
    ) -> TransferResult:
        """Run the full protocol and return aggregate counts and reports"""
        if self.state != TransferState.IDLE:
            raise InvalidStateTransitionError(
                f"Orchestrator already used (state: {self.state.value})"
            )

        options = options or TransferOptions()
        started = time.monotonic()
        result = TransferResult(
            state=self.state, dry_run=options.dry_run, total=len(workflows)
        )

        try:
            await self._run(workflows, options, result)
        except MigrationError as e:
            logger.error(f"Transfer failed in {self.state.value}: {e.message}")
            result.errors.append(e.to_dict())
            await self._transition(TransferState.FAILED)
        finally:
            result.state = self.state
            result.duration_seconds = time.monotonic() - started
            self._persist()

        await self.event_bus.emit(Event(EventType.TRANSFER_END, result.to_dict()))
        logger.info(
            f"Transfer {result.outcome.value}: {result.created} created, "
            f"{result.skipped} skipped, {result.failed} failed "
            f"in {result.duration_seconds:.2f}s"
        )
        return result

    async def _run(
        self, workflows: List[Workflow], options: TransferOptions, result: TransferResult
    ) -> None:
        # Validating
        await self._transition(TransferState.VALIDATING)
        result.validation = validate(workflows)
        if options.strict_validation:
            enforce(result.validation)

        # BuildingGraph
        await self._transition(TransferState.BUILDING_GRAPH)
        self.graph = build_graph(workflows)
        topo = self.graph.topological_order()
        if not topo.has_valid_order:
            logger.warning(
                f"Circular dependencies among {len(topo.cyclic)} workflows; "
                "they are processed after the ordered ones"
            )
        result.order = topo.processing_order()
        result.cycles = [list(group) for group in topo.cycles]
        ordered = [self.graph.workflows[wf_id] for wf_id in result.order]

        if options.dry_run:
            result.operations = self._plan(ordered, options)
            result.skipped = sum(1 for op in result.operations if op.action == "skip")
            await self._transition(TransferState.DONE)
            return

        # UploadingInitial
        await self._transition(TransferState.UPLOADING_INITIAL)
        existing = await self._existing_names(options)
        uploaded = await self._create_all(ordered, options, existing, result)
        self._persist()

        if ordered and not uploaded:
            raise PhaseAbortedError(
                "No workflow reached the destination",
                phase=TransferState.UPLOADING_INITIAL.value,
                failures=[wf.name for wf in ordered],
            )

        # Remapping
        await self._transition(TransferState.REMAPPING)
        remapper = ReferenceRemapper(self.mapping, strict=options.strict_references)
        for remap in remapper.remap_batch(uploaded):
            self.remapped[remap.workflow.id] = remap

        # UploadingFinal
        await self._transition(TransferState.UPLOADING_FINAL)
        await self._update_all(uploaded, options, result)

        if not options.verify:
            await self._transition(TransferState.DONE)
            return

        # Verifying
        await self._transition(TransferState.VERIFYING)
        snapshot = await fetch_snapshot(self.destination, uploaded, self.mapping)
        result.verification = self.verifier.verify(uploaded, self.mapping, snapshot)
        try:
            result.verification.raise_for_failure()
        except VerificationFailedError as e:
            result.errors.append(e.to_dict())
            await self._transition(TransferState.FAILED)
            return
        await self._transition(TransferState.DONE)

    # ------------------------------------------------------------------
    # Planning / resume
    # ------------------------------------------------------------------

    def _previous_new_id(self, workflow: Workflow) -> Optional[str]:
        """Destination id assigned by an earlier run, from the mapping or history"""
        new_id = self.mapping.resolve(workflow.id)
        if new_id:
            return new_id

        record = self.history.find_by_name(workflow.name)
        if (
            record
            and record.old_id == workflow.id
            and record.status in (UploadStatus.SUCCESS, UploadStatus.SKIPPED)
            and record.new_id
        ):
            return record.new_id
        return None

    def _plan(
        self, ordered: List[Workflow], options: TransferOptions
    ) -> List[PlannedOperation]:
        operations = []
        for workflow in ordered:
            previous = self._previous_new_id(workflow) if options.resume else None
            if previous:
                operations.append(
                    PlannedOperation(
                        "skip", workflow.id, workflow.name, f"already migrated as {previous}"
                    )
                )
            else:
                operations.append(PlannedOperation("create", workflow.id, workflow.name))

        for workflow in ordered:
            references = len(workflow.call_references())
            operations.append(
                PlannedOperation(
                    "update",
                    workflow.id,
                    workflow.name,
                    f"remap {references} reference(s)" if references else None,
                )
            )

        for op in operations:
            suffix = f" ({op.reason})" if op.reason else ""
            logger.info(f"  [DRY RUN] {op.action} {op.name!r}{suffix}")
        return operations

    async def _existing_names(self, options: TransferOptions) -> Dict[str, str]:
        if not options.skip_existing:
            return {}
        existing = await self.destination.list()
        logger.info(f"{len(existing)} workflows already on destination")
        return {wf.name: wf.id for wf in existing}

    # ------------------------------------------------------------------
    # Network phases
    # ------------------------------------------------------------------

    async def _run_bounded(self, workflows, worker, options: TransferOptions, phase: str):
        """Run ``worker`` per workflow with at most ``concurrency`` in flight"""
        semaphore = asyncio.Semaphore(options.concurrency)
        abort = asyncio.Event()
        failures: List[str] = []

        async def guarded(workflow: Workflow):
            async with semaphore:
                if abort.is_set():
                    return None
                ok = await worker(workflow, aborted=False)
                if not ok:
                    failures.append(workflow.name)
                    if not options.skip_errors:
                        abort.set()
                return ok

        outcomes = await asyncio.gather(*(guarded(wf) for wf in workflows))

        if abort.is_set():
            for workflow, outcome in zip(workflows, outcomes):
                if outcome is None:
                    await worker(workflow, aborted=True)
            raise PhaseAbortedError(
                f"{phase} stopped after {len(failures)} failure(s)",
                phase=phase,
                failures=failures,
            )
        return outcomes

    async def _create_all(
        self,
        ordered: List[Workflow],
        options: TransferOptions,
        existing: Dict[str, str],
        result: TransferResult,
    ) -> List[Workflow]:
        uploaded: Dict[str, Workflow] = {}

        async def create_one(workflow: Workflow, aborted: bool) -> bool:
            if aborted:
                self._record(workflow, UploadStatus.SKIPPED, error="aborted after earlier failure")
                result.aborted += 1
                return False

            previous = self._previous_new_id(workflow) if options.resume else None
            if previous is None and workflow.name in existing:
                previous = existing[workflow.name]
            if previous and self.mapping.resolve(workflow.id) != previous:
                self.mapping.add(workflow.id, previous, workflow.name)

            if previous:
                self._record(workflow, UploadStatus.SKIPPED, new_id=previous)
                result.skipped += 1
                uploaded[workflow.id] = workflow
                await self.event_bus.emit(
                    Event(EventType.WORKFLOW_SKIPPED, {"name": workflow.name, "newId": previous})
                )
                return True

            try:
                created = await self.destination.create(workflow.to_upload_payload())
                new_id = str(created["id"])
            except Exception as e:
                logger.error(f"Failed to create {workflow.name!r}: {e}")
                self._record(workflow, UploadStatus.FAILED, error=str(e))
                result.failed += 1
                result.errors.append(
                    {"phase": "create", "workflow": workflow.name, "message": str(e)}
                )
                await self.event_bus.emit(
                    Event(EventType.WORKFLOW_FAILED, {"name": workflow.name, "error": str(e)})
                )
                return False

            self.mapping.add(workflow.id, new_id, workflow.name)
            self._record(workflow, UploadStatus.SUCCESS, new_id=new_id)
            result.created += 1
            uploaded[workflow.id] = workflow
            await self.event_bus.emit(
                Event(EventType.WORKFLOW_CREATED, {"name": workflow.name, "newId": new_id})
            )
            return True

        await self._run_bounded(
            ordered, create_one, options, TransferState.UPLOADING_INITIAL.value
        )
        # graph order, not completion order
        return [wf for wf in ordered if wf.id in uploaded]

    async def _update_all(
        self, uploaded: List[Workflow], options: TransferOptions, result: TransferResult
    ) -> None:
        async def update_one(workflow: Workflow, aborted: bool) -> bool:
            if aborted:
                return False

            new_id = self.mapping.resolve(workflow.id)
            payload = self.remapped[workflow.id].workflow.to_upload_payload()
            try:
                await self.destination.update(new_id, payload)
            except Exception as e:
                logger.error(f"Failed to update {workflow.name!r} ({new_id}): {e}")
                result.errors.append(
                    {"phase": "update", "workflow": workflow.name, "message": str(e)}
                )
                await self.event_bus.emit(
                    Event(EventType.WORKFLOW_FAILED, {"name": workflow.name, "error": str(e)})
                )
                return False

            result.updated += 1
            await self.event_bus.emit(
                Event(EventType.WORKFLOW_UPDATED, {"name": workflow.name, "newId": new_id})
            )
            return True

        await self._run_bounded(
            uploaded, update_one, options, TransferState.UPLOADING_FINAL.value
        )

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _record(
        self,
        workflow: Workflow,
        status: UploadStatus,
        new_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        self.history.add(
            UploadRecord.create(
                name=workflow.name,
                old_id=workflow.id,
                status=status,
                new_id=new_id,
                error=error,
            )
        )

    def _persist(self) -> None:
        if self.mapping_path:
            self.mapping.persist(self.mapping_path)
        if self.history_path:
            self.history.persist(self.history_path)


async def plan_transfer(
    workflows: List[Workflow],
    mapping: Optional[IDMappingStore] = None,
    history: Optional[UploadHistoryStore] = None,
    options: Optional[TransferOptions] = None,
) -> TransferResult:
    """Dry-run without a destination: the order and operations a live run would use"""
    options = replace(options or TransferOptions(), dry_run=True)
    orchestrator = TransferOrchestrator(_NoDestination(), mapping=mapping, history=history)
    return await orchestrator.transfer(workflows, options)


class _NoDestination(WorkflowTransport):
    name = "dry-run"

    async def list(self, filter=None):
        raise MigrationError("Dry-run must not contact the destination")

    async def create(self, payload):
        raise MigrationError("Dry-run must not contact the destination")

    async def update(self, workflow_id, payload):
        raise MigrationError("Dry-run must not contact the destination")

    async def get(self, workflow_id):
        raise MigrationError("Dry-run must not contact the destination")


async def fetch_snapshot(
    destination: WorkflowTransport, workflows: List[Workflow], mapping: IDMappingStore
) -> List[Workflow]:
    """Fetch the destination copy of every mapped workflow; unmapped or missing ones are left out"""

    async def fetch(workflow: Workflow) -> Optional[Workflow]:
        new_id = mapping.resolve(workflow.id)
        if new_id is None:
            return None
        try:
            return await destination.get(new_id)
        except Exception as e:
            logger.warning(f"Could not fetch {workflow.name!r} ({new_id}): {e}")
            return None

    fetched = await asyncio.gather(*(fetch(wf) for wf in workflows))
    return [wf for wf in fetched if wf is not None]
