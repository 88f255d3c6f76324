# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Dependency graph over workflows.

An edge ``from -> to`` means workflow ``from`` calls workflow ``to``, so
``to`` has to exist before ``from`` can point at it. The graph yields a
deterministic processing order with Kahn's algorithm.
"""

import heapq
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import DuplicateIdentifierError, DuplicateNameError
from .models import Workflow

logger = logging.getLogger("flowmigrate.graph")


@dataclass
class TopologicalOrder:
    """Safe processing order plus the nodes that could not be ordered"""

    order: List[str]
    cycles: List[List[str]] = field(default_factory=list)

    @property
    def has_valid_order(self) -> bool:
        return not self.cycles

    @property
    def cyclic(self) -> List[str]:
        return [wf_id for group in self.cycles for wf_id in group]

    def processing_order(self) -> List[str]:
        """Ordered prefix followed by cyclic nodes"""
        return self.order + self.cyclic

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": list(self.order),
            "cycles": [list(group) for group in self.cycles],
            "hasValidOrder": self.has_valid_order,
        }


@dataclass
class GraphStatistics:
    total_workflows: int
    total_dependencies: int
    avg_dependencies: float
    max_dependencies: int
    workflows_without_dependencies: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalWorkflows": self.total_workflows,
            "totalDependencies": self.total_dependencies,
            "avgDependencies": self.avg_dependencies,
            "maxDependencies": self.max_dependencies,
            "workflowsWithoutDependencies": self.workflows_without_dependencies,
        }


class WorkflowGraph:
    """
    Directed graph of workflow call-dependencies.

    Workflows are kept in insertion order; that order is the tie-break
    whenever several workflows are ready at once.
    """

    def __init__(self):
        self.workflows: Dict[str, Workflow] = {}
        self.name_to_id: Dict[str, str] = {}
        self._dependencies: Dict[str, List[str]] = {}
        self._dependents: Dict[str, List[str]] = {}
        self._position: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.workflows)

    def __contains__(self, workflow_id: str) -> bool:
        return workflow_id in self.workflows

    def add_workflow(self, workflow: Workflow) -> None:
        """
        Add a workflow node.

        Raises:
            DuplicateIdentifierError: id already present
            DuplicateNameError: name already used by a workflow with another id
        """
        if workflow.id in self.workflows:
            existing = self.workflows[workflow.id]
            raise DuplicateIdentifierError(
                f"Duplicate workflow id: {workflow.id} "
                f"(names: {existing.name!r}, {workflow.name!r})",
                workflow_id=workflow.id,
                names=[existing.name, workflow.name],
            )

        existing_id = self.name_to_id.get(workflow.name)
        if existing_id is not None and existing_id != workflow.id:
            raise DuplicateNameError(
                f"Duplicate workflow name: {workflow.name!r} "
                f"(ids: {existing_id}, {workflow.id})",
                name=workflow.name,
                workflow_ids=[existing_id, workflow.id],
            )

        self._position[workflow.id] = len(self.workflows)
        self.workflows[workflow.id] = workflow
        self.name_to_id[workflow.name] = workflow.id
        self._dependencies.setdefault(workflow.id, [])
        self._dependents.setdefault(workflow.id, [])

    def add_dependency(self, from_id: str, to_id: str) -> None:
        """Record that ``from_id`` calls ``to_id``. Adding a pair twice is a no-op."""
        deps = self._dependencies.setdefault(from_id, [])
        if to_id not in deps:
            deps.append(to_id)

        dependents = self._dependents.setdefault(to_id, [])
        if from_id not in dependents:
            dependents.append(from_id)

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        return self.workflows.get(workflow_id)

    def dependencies_of(self, workflow_id: str) -> List[str]:
        """Workflows called by ``workflow_id``; empty for unknown ids"""
        return list(self._dependencies.get(workflow_id, []))

    def dependents_of(self, workflow_id: str) -> List[str]:
        """Workflows calling ``workflow_id``; empty for unknown ids"""
        return list(self._dependents.get(workflow_id, []))

    def topological_order(self) -> TopologicalOrder:
        """
        Kahn's algorithm over the known workflows.

        In-degree is the number of known dependencies. Whatever never reaches
        in-degree zero is returned as a single cycle group, in insertion order.
        """
        in_degree = {
            wf_id: sum(1 for dep in self._dependencies[wf_id] if dep in self.workflows)
            for wf_id in self.workflows
        }

        ready = [self._position[wf_id] for wf_id, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        ids_by_position = list(self.workflows)

        order: List[str] = []
        while ready:
            current = ids_by_position[heapq.heappop(ready)]
            order.append(current)

            for dependent in self._dependents.get(current, []):
                if dependent not in in_degree:
                    continue
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, self._position[dependent])

        unprocessed = [wf_id for wf_id, degree in in_degree.items() if degree > 0]
        return TopologicalOrder(order=order, cycles=[unprocessed] if unprocessed else [])

    def statistics(self) -> GraphStatistics:
        total = 0
        maximum = 0
        without = 0

        for wf_id in self.workflows:
            count = len(self._dependencies.get(wf_id, []))
            total += count
            maximum = max(maximum, count)
            if count == 0:
                without += 1

        size = len(self.workflows)
        return GraphStatistics(
            total_workflows=size,
            total_dependencies=total,
            avg_dependencies=round(total / size, 2) if size else 0.0,
            max_dependencies=maximum,
            workflows_without_dependencies=without,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Nodes, edges and statistics for debugging output"""
        nodes = []
        edges = []

        for wf_id, workflow in self.workflows.items():
            nodes.append(
                {
                    "id": wf_id,
                    "name": workflow.name,
                    "dependencies": len(self._dependencies.get(wf_id, [])),
                    "dependents": len(self._dependents.get(wf_id, [])),
                }
            )
            for dep_id in self._dependencies.get(wf_id, []):
                target = self.workflows.get(dep_id)
                edges.append(
                    {
                        "from": workflow.name,
                        "to": target.name if target else dep_id,
                        "fromId": wf_id,
                        "toId": dep_id,
                    }
                )

        return {"nodes": nodes, "edges": edges, "statistics": self.statistics().to_dict()}


def build_graph(workflows: Iterable[Workflow]) -> WorkflowGraph:
    """
    Build the graph for a batch of workflows.

    Raises:
        DuplicateIdentifierError, DuplicateNameError: on colliding workflows
    """
    graph = WorkflowGraph()
    workflows = list(workflows)

    for workflow in workflows:
        graph.add_workflow(workflow)

    for workflow in workflows:
        for ref_id in workflow.call_references():
            if ref_id in graph:
                graph.add_dependency(workflow.id, ref_id)
                logger.debug(f"{workflow.name!r} calls {graph.workflows[ref_id].name!r}")
            else:
                logger.warning(
                    f"Unknown workflow {ref_id} referenced by {workflow.name!r}"
                )

    stats = graph.statistics()
    logger.info(
        f"Graph built: {stats.total_workflows} workflows, "
        f"{stats.total_dependencies} dependencies"
    )
    return graph
