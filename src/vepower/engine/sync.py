"""Synchronization engine - lazily advance stale aggregates epoch by epoch.

At each epoch boundary e crossed since an aggregate's last update:
1. evaluate the balance at e
2. remove the slope of locks expiring at e (they stop decaying there)
3. apply the pending delta keyed to e, if any
4. for the global aggregate, memoize the supply snapshot for epoch e
"""

import logging
from typing import Optional, Tuple

from .accounts import AccountStore, AggregateAccount, PendingDelta, Role
from .decay import DecayBalance, rebase
from .epochs import EpochClock
from .errors import AccountingInvariantError, QueryTimeTooEarly

logger = logging.getLogger(__name__)


class SyncEngine:
    """Checkpoint-advance algorithm over an AccountStore."""

    def __init__(self, clock: EpochClock, store: AccountStore):
        self.clock = clock
        self.store = store

    def sync(self, account: AggregateAccount, upto: int, max_epochs: Optional[int] = None) -> bool:
        """
        Bring an aggregate up to the epoch containing `upto`.

        Args:
            account: Aggregate to advance
            upto: Current timestamp
            max_epochs: Cap on boundaries processed in this call

        Returns:
            True if the aggregate is fully caught up
        """
        target = self.clock.current_epoch_start(upto)
        if account.last_updated >= target:
            return True

        processed = 0
        for e in self.clock.boundaries(account.last_updated, target):
            if max_epochs is not None and processed >= max_epochs:
                break
            account.history, account.pending = self._step(
                account, account.history, account.pending, e
            )
            # Crossed expiries never fire again
            account.slope_adjustments.pop(e, None)
            if account.role is Role.GLOBAL:
                self.store.supply_snapshots[self.clock.epoch_number(e)] = account.history.value_at(e)
            account.last_updated = e
            processed += 1

        if processed:
            logger.debug(
                "Synced %s aggregate %s over %d epochs to %d",
                account.role.value, account.key, processed, account.last_updated
            )
        return account.last_updated >= target

    def project(self, account: AggregateAccount, t: int) -> DecayBalance:
        """
        Balance the aggregate would hold after syncing to t, without mutating it.

        Raises:
            QueryTimeTooEarly: If t precedes the aggregate's last update
        """
        if t < account.last_updated:
            raise QueryTimeTooEarly(
                f"{account.role.value} aggregate {account.key} is synced to "
                f"{account.last_updated}; cannot evaluate at {t}"
            )
        history = account.history
        pending = account.pending
        for e in self.clock.boundaries(account.last_updated, self.clock.current_epoch_start(t)):
            history, pending = self._step(account, history, pending, e)
        return history

    def value_at(self, account: AggregateAccount, t: int) -> int:
        return self.project(account, t).value_at(t)

    def _step(
        self,
        account: AggregateAccount,
        history: DecayBalance,
        pending: Optional[PendingDelta],
        e: int
    ) -> Tuple[DecayBalance, Optional[PendingDelta]]:
        """Cross boundary e; returns the new balance and the still-outstanding pending delta."""
        history = rebase(history, e, account.slope_adjustments.get(e, 0))
        if pending is not None:
            if pending.epoch < e:
                raise AccountingInvariantError(
                    f"{account.role.value} aggregate {account.key} skipped pending "
                    f"delta for {pending.epoch}"
                )
            if pending.epoch == e:
                history = pending.apply_to(history)
                pending = None
        if history.is_negative:
            raise AccountingInvariantError(
                f"{account.role.value} aggregate {account.key} went negative at {e}: {history}"
            )
        return history, pending
