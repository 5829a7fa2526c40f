"""
Audit Sinks

The core never decides how audit entries are persisted: it calls ``append``
on whatever sink the host application supplies. Delivery failures are logged
and never fail the operation being audited.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from src.portal_data.contracts import AuditAction, AuditEntry

logger = logging.getLogger(__name__)

audit_logger = logging.getLogger("portal_data.audit")


@runtime_checkable
class AuditSink(Protocol):
    """Append-only destination for audit entries."""

    async def append(self, entry: AuditEntry) -> None: ...


class LoggingAuditSink:
    """Writes each entry as one structured line on the ``portal_data.audit`` logger."""

    async def append(self, entry: AuditEntry) -> None:
        audit_logger.info(
            f"{entry.action.value} by {entry.actor or 'anonymous'}: {entry.details}",
            extra={"audit": entry.model_dump(mode="json")},
        )


class InMemoryAuditSink:
    """List-backed sink for tests and embedding."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    @property
    def actions(self) -> list[AuditAction]:
        return [entry.action for entry in self.entries]

    def clear(self) -> None:
        self.entries.clear()


async def record_audit(
    sink: AuditSink,
    action: AuditAction,
    actor: str | None,
    details: str,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Build an entry and deliver it, logging (not raising) on delivery failure."""
    entry = AuditEntry(action=action, actor=actor, details=details, metadata=metadata or {})
    try:
        await sink.append(entry)
    except Exception as e:
        logger.warning(f"Audit delivery failed for {action.value}: {e}")
