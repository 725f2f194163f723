"""
Retention Sweeper

DESIGN DECISION: Soft-deleted transactions stay in the trash until they
have been deleted for longer than the profile's retention window (6 to
10 years, for tax record keeping). The sweep then removes the rows and
their receipt files for good.

Active transactions are never removed by the sweep. Those dated before
the cutoff only raise a warning, shown at most once per warning interval.

The sweep holds the Concurrency Guard so it never runs against a
half-written backup or a restore in progress. If the guard is already
held the sweep is skipped, not queued.
"""

from datetime import date, datetime, timedelta
from typing import Optional

import structlog

from ledgervault.audit import AuditLogger
from ledgervault.config import RetentionSettings, get_settings
from ledgervault.models.audit import AuditEventBuilder
from ledgervault.models.ledger import ProfileContext, RetentionReport, utc_now
from ledgervault.services.backup.guard import OperationGuard
from ledgervault.services.preferences import PreferenceStore
from ledgervault.services.receipts import ReceiptFileStore
from ledgervault.services.storage.sqlite_store import SQLiteLedgerStore


logger = structlog.get_logger("ledgervault.retention")


def years_before(moment: datetime, years: int) -> datetime:
    """Same calendar day `years` earlier; Feb 29 falls back to Feb 28."""
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        return moment.replace(year=moment.year - years, day=28)


class RetentionSweeper:
    """Purge expired trash and report expired active records."""

    def __init__(
        self,
        store: SQLiteLedgerStore,
        preferences: PreferenceStore,
        receipts: ReceiptFileStore,
        guard: OperationGuard,
        settings: Optional[RetentionSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._preferences = preferences
        self._receipts = receipts
        self._guard = guard
        self._settings = settings or get_settings().retention
        self._audit_logger = audit_logger

    async def sweep(self, now: Optional[datetime] = None) -> RetentionReport:
        """Run one sweep over every profile."""
        if self._guard.is_held:
            held_by = self._guard.current_operation
            logger.info("retention_sweep_skipped", held_by=held_by)
            if self._audit_logger:
                await self._audit_logger.log(AuditEventBuilder.retention_sweep_skipped(held_by))
            return RetentionReport(skipped=True, held_by=held_by)

        now = now or utc_now()
        async with self._guard.hold("retention_sweep"):
            report = RetentionReport()
            for profile in await self._store.list_profiles():
                await self._sweep_profile(profile.context, now, report)
                report.profiles_swept += 1

            if report.purged_receipts:
                await self._receipts.cleanup_empty_directories()
            report.warning_due = await self._warning_due(now.date(), report.expired_active)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.retention_sweep_completed(
                purged=report.purged_transactions,
                expired_active=report.expired_active,
                profiles=report.profiles_swept,
            ))
        return report

    async def _sweep_profile(
        self,
        ctx: ProfileContext,
        now: datetime,
        report: RetentionReport,
    ) -> None:
        years = await self._preferences.get_retention_years(ctx)
        cutoff = years_before(now, years)

        expired = await self._store.list_deleted_before(ctx, cutoff)
        if expired:
            report.purged_transactions += await self._store.hard_delete_transactions(
                ctx, [t.id for t in expired]
            )
            report.purged_receipts += await self._receipts.delete_many(
                [path for t in expired for path in t.attachments]
            )
            logger.info(
                "retention_purged",
                profile_id=ctx.profile_id,
                transactions=len(expired),
                cutoff=cutoff.isoformat(),
            )

        report.expired_active += await self._store.count_active_before(ctx, cutoff.date())

    async def _warning_due(self, today: date, expired_active: int) -> bool:
        if not expired_active:
            return False
        last = await self._preferences.get_last_retention_warning()
        interval = timedelta(days=self._settings.warning_interval_days)
        if last is not None and today - last < interval:
            return False
        await self._preferences.set_last_retention_warning(today)
        return True
