"""EventBus for decoupled publish/subscribe communication."""

from enum import Enum, auto
from typing import Any, Callable
from collections import defaultdict


class EventType(Enum):
    # State manager lifecycle
    INITIALIZED = auto()          # data: result (InitResult)
    CALIBRATED = auto()           # data: result (CalibrationResult)
    STATE_RESET = auto()

    # Per-frame
    STATE_UPDATED = auto()        # data: result (UpdateResult)

    # Writes
    COORDINATES_APPLIED = auto()  # data: result (ApplyResult)

    # Range of motion (informational, UI highlighting)
    CONSTRAINT_VIOLATION = auto()  # data: violations (list), source (str)

    # Neutral pose
    NEUTRAL_POSE_LOADED = auto()    # data: source (str), bone_count (int)
    NEUTRAL_POSE_CAPTURED = auto()  # data: label (str), bone_count (int)
    FALLBACK_REFERENCE_USED = auto()  # data: bone (str)

    # IK
    IK_SOLVED = auto()            # data: result (DragStepResult)
    IK_CHAIN_DROPPED = auto()     # data: chain (str), reason (str)


class EventBus:
    """Simple publish/subscribe event system."""

    def __init__(self):
        self._handlers: dict[EventType, list[Callable]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Callable) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: EventType, handler: Callable) -> None:
        handlers = self._handlers[event_type]
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_type: EventType, **data: Any) -> None:
        for handler in list(self._handlers[event_type]):
            handler(**data)

    def clear(self) -> None:
        self._handlers.clear()
