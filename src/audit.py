"""Audit log subscriber: renders every SystemEvent as a structured log line.

Registered as a global subscriber (receives ALL events). Without a database
the structured log stream is the audit trail.

Never raises. Failures are logged and do not reach the event system.
"""

from __future__ import annotations

import logging

import structlog

from src.schemas.events import SystemEvent

logger = logging.getLogger(__name__)

audit_logger = structlog.get_logger("turnobot.audit")


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit log.

    Called by the event system for every emitted event.
    """
    try:
        audit_logger.info(
            event.event_type.value,
            event_id=str(event.id),
            conversation_id=str(event.conversation_id) if event.conversation_id else None,
            sender_id=event.sender_id,
            source=event.source_module,
            **event.data,
        )
    except Exception:
        logger.exception(
            "Failed to write audit event: %s (conversation=%s)",
            event.event_type.value,
            event.conversation_id,
        )
