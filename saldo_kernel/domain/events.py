"""
Domain events and the notification collaborator contract.

Responsibility:
    The kernel announces what happened (``budget_request.approved``,
    ``advance.transferred`` ...) as frozen ``DomainEvent`` values.  Turning
    them into user-visible notifications -- wording, channels, preferences,
    delivery -- belongs to the collaborator behind ``EventPublisher``.

Architecture position:
    Kernel > Domain.  Services receive an EventPublisher by injection and
    publish after their writes are flushed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from saldo_kernel.logging_config import get_logger

logger = get_logger("domain.events")

BUDGET_REQUEST_SUBMITTED = "budget_request.submitted"
BUDGET_REQUEST_APPROVED = "budget_request.approved"
BUDGET_REQUEST_REJECTED = "budget_request.rejected"
ADVANCE_TRANSFERRED = "advance.transferred"
ADVANCE_SETTLED = "advance.settled"
ADVANCE_DELETED = "advance.deleted"
SALDO_ADJUSTED = "saldo.adjusted"


@dataclass(frozen=True)
class DomainEvent:
    """Something that happened to one entity, addressed to one user."""

    name: str
    entity_id: UUID
    user_id: UUID
    actor_id: UUID
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class EventPublisher(Protocol):
    """Notification collaborator contract."""

    def publish(self, event: DomainEvent) -> None: ...


class LoggingEventPublisher:
    """Default publisher: writes each event as a structured log line."""

    def publish(self, event: DomainEvent) -> None:
        logger.info(
            "domain_event_emitted",
            extra={
                "event_name": event.name,
                "entity_id": str(event.entity_id),
                "target_user_id": str(event.user_id),
                "event_actor_id": str(event.actor_id),
                "occurred_at": event.occurred_at,
                "payload": event.payload,
            },
        )


class InMemoryEventPublisher:
    """Collects events in a list; used by tests and in-process consumers."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.name for e in self.events]

    def of(self, name: str) -> list[DomainEvent]:
        return [e for e in self.events if e.name == name]
