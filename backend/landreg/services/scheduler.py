"""
Timer-driven pipeline: inbox check, pair reconciliation, notifications.

The periodic loop and the manual trigger endpoint share one InboxPipeline,
whose lock keeps cycles from overlapping within the process. Across
processes, the claim written by the reconciler keeps a pair from being
processed twice.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from landreg.models.hmlr import ProcessingResult
from landreg.services.case_store import CaseStoreError
from landreg.services.inbox_watcher import InboxCycleResult, InboxWatcher
from landreg.services.mailbox import MailboxError
from landreg.services.notifier import ComplianceNotifier
from landreg.services.reconciler import PairAlreadyClaimed, PairNotFound, ResponseReconciler
from landreg.services.storage import StorageError

logger = logging.getLogger(__name__)

DISPATCH_INLINE = "inline"
DISPATCH_QUEUED = "queued"

# Errors a tick logs and survives; the next tick is the retry.
_TRANSIENT_ERRORS = (MailboxError, StorageError, CaseStoreError)


@dataclass
class InboxCheckSummary:
    cycle: InboxCycleResult
    results: list[ProcessingResult] = field(default_factory=list)


class InboxPipeline:
    def __init__(
        self,
        watcher: InboxWatcher,
        reconciler: ResponseReconciler,
        notifier: Optional[ComplianceNotifier] = None,
        dispatch_mode: str = DISPATCH_QUEUED,
    ):
        if dispatch_mode not in (DISPATCH_INLINE, DISPATCH_QUEUED):
            raise ValueError(f"Unknown PAIR_DISPATCH_MODE {dispatch_mode!r}")
        self.watcher = watcher
        self.reconciler = reconciler
        self.notifier = notifier
        self.dispatch_mode = dispatch_mode
        self._lock = asyncio.Lock()

    async def check_inbox(self, dispatch_mode: Optional[str] = None) -> InboxCheckSummary:
        """
        Run one inbox cycle. In inline mode the new pairs are reconciled
        before returning; in queued mode they are left declared for
        process_pending().

        Mailbox errors propagate.
        """
        async with self._lock:
            return await self._check_inbox(dispatch_mode or self.dispatch_mode)

    async def process_pending(self) -> list[ProcessingResult]:
        async with self._lock:
            return await self.reconciler.process_pending_pairs()

    async def tick(self) -> None:
        """One timer tick. Each stage is attempted even if an earlier one failed."""
        async with self._lock:
            try:
                await self._check_inbox(self.dispatch_mode)
            except _TRANSIENT_ERRORS as e:
                logger.error(f"Inbox check aborted: {e}")

            try:
                await self.reconciler.process_pending_pairs()
            except _TRANSIENT_ERRORS as e:
                logger.error(f"Pending pair processing aborted: {e}")

            if self.notifier is not None:
                try:
                    sent = await self.notifier.dispatch_pending()
                    if sent:
                        logger.info(f"Sent {sent} compliance notification(s)")
                except _TRANSIENT_ERRORS as e:
                    logger.error(f"Notification dispatch aborted: {e}")

    async def run_forever(self, interval_seconds: float) -> None:
        logger.info(f"Inbox polling every {interval_seconds:g}s ({self.dispatch_mode} dispatch)")
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                # Keep the timer alive; the failure is visible in the logs.
                logger.exception("Inbox tick failed")
            await asyncio.sleep(interval_seconds)

    async def _check_inbox(self, dispatch_mode: str) -> InboxCheckSummary:
        cycle = await self.watcher.run_cycle()
        summary = InboxCheckSummary(cycle=cycle)
        if dispatch_mode != DISPATCH_INLINE:
            return summary

        for pair in cycle.pairs:
            try:
                summary.results.append(await self.reconciler.reconcile(pair))
            except (PairNotFound, PairAlreadyClaimed) as e:
                logger.info(e.message)
        return summary
