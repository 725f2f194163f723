"""
Audit Logger

DESIGN DECISION: Every significant action on the ledger is logged.
This provides:
1. Traceability of record changes beyond the per-row edit history
2. A record of which backup/restore stage failed
3. Debugging capability for migrations run on user devices

The audit logger:
- Is async so call sites in the lifecycle managers stay uniform
- Never raises; a logging failure must not fail a ledger write
- Supports correlation IDs to trace one backup or restore end to end
"""

from uuid import UUID, uuid4

import structlog

from ledgervault.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Events go to the structured local log. The ledger itself keeps
    field-level history in each transaction's edit_history.
    """

    def __init__(self):
        self._logger = structlog.get_logger("ledgervault.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True once the event has been handed to the log.
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        return True

    async def log_backup_failed(
        self,
        stage: str,
        safe_to_retry: bool,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a failed backup with its stage."""
        event = AuditEventBuilder.backup_failed(
            stage=stage,
            safe_to_retry=safe_to_retry,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_restore_failed(
        self,
        stage: str,
        safe_to_retry: bool,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a failed restore with its stage."""
        event = AuditEventBuilder.restore_failed(
            stage=stage,
            safe_to_retry=safe_to_retry,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a backup or restore.
    Pass it through all subsequent operations.
    """
    return uuid4()
