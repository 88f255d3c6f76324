# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Flowmigrate Core - Init file

Workflow migration engine: dependency graph, ID mapping, reference
remapping, validation, verification and the transfer state machine.
"""

from .events import Event, EventBus, EventType
from .exceptions import (
    ConfigError,
    DuplicateIdentifierError,
    DuplicateNameError,
    GraphError,
    InvalidStateTransitionError,
    MigrationError,
    PersistenceError,
    PhaseAbortedError,
    TransportError,
    UnresolvedReferenceError,
    ValidationFailedError,
    VerificationFailedError,
)
from .graph import GraphStatistics, TopologicalOrder, WorkflowGraph, build_graph
from .history import UploadHistoryStore, UploadRecord, UploadStatus
from .id_mapping import IDMappingStore, MappingEntry
from .compare import ComparisonEntry, ComparisonReport, compare_workflows
from .loader import load_workflow_file, load_workflows, save_workflow
from .models import Workflow
from .orchestrator import (
    TransferOptions,
    TransferOrchestrator,
    TransferOutcome,
    TransferResult,
    TransferState,
    fetch_snapshot,
    plan_transfer,
)
from .references import CallReference, extract_references, rewrite_references
from .remapper import ReferenceRemapper, RemapResult, remap_workflow
from .transport import N8nTransport, WorkflowTransport
from .validator import ValidationReport, enforce, validate
from .verifier import MigrationVerifier, VerificationResult, verify

__all__ = [
    # Model
    "Workflow",
    "CallReference",
    "extract_references",
    "rewrite_references",
    "load_workflows",
    "load_workflow_file",
    "save_workflow",
    # Graph
    "WorkflowGraph",
    "TopologicalOrder",
    "GraphStatistics",
    "build_graph",
    # Stores
    "IDMappingStore",
    "MappingEntry",
    "UploadHistoryStore",
    "UploadRecord",
    "UploadStatus",
    # Remap / validate / verify
    "ReferenceRemapper",
    "RemapResult",
    "remap_workflow",
    "ValidationReport",
    "validate",
    "enforce",
    "MigrationVerifier",
    "VerificationResult",
    "verify",
    # Compare
    "ComparisonEntry",
    "ComparisonReport",
    "compare_workflows",
    # Orchestration
    "TransferOrchestrator",
    "TransferOptions",
    "TransferResult",
    "TransferState",
    "TransferOutcome",
    "plan_transfer",
    "fetch_snapshot",
    "EventBus",
    "Event",
    "EventType",
    # Transport
    "WorkflowTransport",
    "N8nTransport",
    # Errors
    "MigrationError",
    "ConfigError",
    "PersistenceError",
    "GraphError",
    "DuplicateIdentifierError",
    "DuplicateNameError",
    "UnresolvedReferenceError",
    "ValidationFailedError",
    "VerificationFailedError",
    "TransportError",
    "InvalidStateTransitionError",
    "PhaseAbortedError",
]
