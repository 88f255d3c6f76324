# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Workflow Transport boundary.

The engine only sees success or a raised exception from these calls;
timeouts and retries belong to the implementation.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models import Workflow


class WorkflowTransport(ABC):
    """Access to one workflow-automation instance"""

    name: str = "transport"

    @abstractmethod
    async def list(self, filter: Optional[Dict[str, Any]] = None) -> List[Workflow]:
        """List workflows, optionally filtered (e.g. ``{"tags": "prod"}``)"""

    @abstractmethod
    async def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a workflow; the response carries the assigned ``id``"""

    @abstractmethod
    async def update(self, workflow_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Overwrite an existing workflow"""

    @abstractmethod
    async def get(self, workflow_id: str) -> Optional[Workflow]:
        """Fetch one workflow, or None when it does not exist"""

    async def close(self) -> None:
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
