import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, DefaultDict, List, Optional, Type

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VerificationRecorded:
    session_id: int
    verification_id: int
    status: str
    discrepancy: Optional[int]
    recorded_by: int
    is_override: bool = False
    occurred_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class SessionTransitioned:
    session_id: int
    from_status: Optional[str]
    to_status: str
    performed_by: int
    occurred_at: datetime = field(default_factory=_now)


class AuditEventBus:
    """In-process publish/subscribe for audit domain events. Handlers may be sync or async."""

    def __init__(self):
        self._handlers: DefaultDict[Type, List[Callable[[Any], Any]]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Callable[[Any], Any]) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Type, handler: Callable[[Any], Any]) -> None:
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    async def publish(self, event: Any) -> None:
        for handler in list(self._handlers[type(event)]):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Audit event handler {getattr(handler, '__name__', handler)} failed for {type(event).__name__}: {e}")


event_bus = AuditEventBus()
