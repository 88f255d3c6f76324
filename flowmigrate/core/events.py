# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import inspect
from enum import Enum
from typing import Any, Callable, Dict, List


class EventType(Enum):
    STATE_CHANGED = "state_changed"
    WORKFLOW_CREATED = "workflow_created"
    WORKFLOW_SKIPPED = "workflow_skipped"
    WORKFLOW_FAILED = "workflow_failed"
    WORKFLOW_UPDATED = "workflow_updated"
    TRANSFER_END = "transfer_end"


class Event:
    def __init__(self, type: EventType, data: Dict[str, Any]):
        self.type = type
        self.data = data

    def __repr__(self) -> str:
        return f"Event({self.type.value}, {self.data})"


class EventBus:
    def __init__(self):
        self._subscribers: Dict[EventType, List[Callable[[Event], Any]]] = {}

    def subscribe(self, event_type: EventType, callback: Callable[[Event], Any]):
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(callback)

    def subscribe_all(self, callback: Callable[[Event], Any]):
        for event_type in EventType:
            self.subscribe(event_type, callback)

    async def emit(self, event: Event):
        if event.type in self._subscribers:
            for callback in self._subscribers[event.type]:
                if inspect.iscoroutinefunction(callback):
                    await callback(event)
                else:
                    callback(event)
