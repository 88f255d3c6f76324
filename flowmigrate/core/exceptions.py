# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Migration Exception Hierarchy

Exception Hierarchy:
    MigrationError (base)
    ├── ConfigError
    ├── PersistenceError
    ├── GraphError
    │   ├── DuplicateIdentifierError
    │   └── DuplicateNameError
    ├── UnresolvedReferenceError
    ├── ValidationFailedError
    ├── TransportError
    ├── VerificationFailedError
    ├── InvalidStateTransitionError
    └── PhaseAbortedError
"""

from typing import Any, Dict, List, Optional

# ============================================================================
# Base Exceptions
# ============================================================================


class MigrationError(Exception):
    """Base exception for all migration errors"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        result = {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }

        if self.cause:
            result["cause"] = {
                "type": self.cause.__class__.__name__,
                "message": str(self.cause),
            }

        return result

    def __str__(self):
        base = self.message
        if self.details:
            base += f" | Details: {self.details}"
        if self.cause:
            base += f" | Caused by: {self.cause}"
        return base


# ============================================================================
# Configuration / Persistence Errors
# ============================================================================


class ConfigError(MigrationError):
    """Configuration-related errors"""


class PersistenceError(MigrationError):
    """Mapping or history file could not be read or written"""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = path

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["path"] = self.path
        return result


# ============================================================================
# Graph Errors
# ============================================================================


class GraphError(MigrationError):
    """Workflow graph construction errors"""


class DuplicateIdentifierError(GraphError):
    """Two workflows in one batch share an identifier"""

    def __init__(self, message: str, workflow_id: str, names: List[str], **kwargs):
        super().__init__(message, **kwargs)
        self.workflow_id = workflow_id
        self.names = names

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"workflow_id": self.workflow_id, "names": self.names})
        return result


class DuplicateNameError(GraphError):
    """Two workflows with different identifiers share a name"""

    def __init__(self, message: str, name: str, workflow_ids: List[str], **kwargs):
        super().__init__(message, **kwargs)
        self.name = name
        self.workflow_ids = workflow_ids

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"name": self.name, "workflow_ids": self.workflow_ids})
        return result


# ============================================================================
# Remap / Validation / Verification Errors
# ============================================================================


class UnresolvedReferenceError(MigrationError):
    """A call-reference has no entry in the ID mapping (strict remap)"""

    def __init__(
        self, message: str, workflow_name: str, references: List[str], **kwargs
    ):
        super().__init__(message, **kwargs)
        self.workflow_name = workflow_name
        self.references = references

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {"workflow_name": self.workflow_name, "references": self.references}
        )
        return result


class ValidationFailedError(MigrationError):
    """Strict validation found duplicates or unresolved references"""

    def __init__(self, message: str, report: Any, **kwargs):
        super().__init__(message, **kwargs)
        self.report = report

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["report"] = self.report.to_dict()
        return result


class VerificationFailedError(MigrationError):
    """Post-migration verification did not pass"""

    def __init__(self, message: str, result: Any, **kwargs):
        super().__init__(message, **kwargs)
        self.result = result

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["verification"] = self.result.to_dict()
        return data


# ============================================================================
# Transport Errors
# ============================================================================


class TransportError(MigrationError):
    """A create/update/get/list call against an instance failed"""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.url = url
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"url": self.url, "status_code": self.status_code})
        return result


# ============================================================================
# Orchestration Errors
# ============================================================================


class InvalidStateTransitionError(MigrationError):
    """Raised when the orchestrator attempts an illegal state change"""


class PhaseAbortedError(MigrationError):
    """A network phase stopped because skip_errors is disabled"""

    def __init__(self, message: str, phase: str, failures: List[str], **kwargs):
        super().__init__(message, **kwargs)
        self.phase = phase
        self.failures = failures

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"phase": self.phase, "failures": self.failures})
        return result
