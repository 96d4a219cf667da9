"""Delegation state machine - per-lock delegation with deferred activation.

Transitions never move balances immediately. They book a pending transfer
of the lock's balance from the outgoing future holder to the incoming one,
keyed to the next epoch start, on the per-account ledger and on the
(owner, delegate) pair ledger. Slope adjustments follow the future holder
at once; they only fire at expiry, which is always later than activation.
"""

import logging
from enum import Enum
from typing import List, Optional

from .accounts import AccountStore, AggregateAccount
from .decay import DecayBalance
from .epochs import EpochClock
from .errors import (
    LockAlreadyDelegated,
    LockAlreadyUnlocked,
    LockExpiresTooSoon,
    LockNotDelegated,
    NotLockOwner,
    SameDelegate,
    SelfDelegation,
    UnregisteredDelegate,
)
from .locks import Lock
from .sync import SyncEngine

logger = logging.getLogger(__name__)


class DelegationState(str, Enum):
    UNDELEGATED = "undelegated"
    PENDING = "pending"
    ACTIVE = "active"


class DelegationAction(str, Enum):
    DELEGATE = "delegate"
    SWITCH = "switch"
    UNDELEGATE = "undelegate"


def delegation_state(lock: Lock, now: int) -> DelegationState:
    """Classify a lock's delegation at time now."""
    if lock.delegate is None:
        return DelegationState.UNDELEGATED
    if lock.delegation_epoch > now:
        return DelegationState.PENDING
    return DelegationState.ACTIVE


class DelegationManager:
    """Applies delegation transitions and routes lock deltas to credited ledgers."""

    def __init__(
        self,
        clock: EpochClock,
        store: AccountStore,
        sync: SyncEngine,
        registry,
        min_delegation_epochs: int = 2
    ):
        """
        Initialize delegation manager.

        Args:
            clock: Epoch clock
            store: Aggregate account store
            sync: Synchronization engine
            registry: Object answering is_registered(account)
            min_delegation_epochs: Whole epochs that must remain for a transition
        """
        self.clock = clock
        self.store = store
        self.sync = sync
        self.registry = registry
        self.min_delegation_epochs = min_delegation_epochs

    def aggregates_for(self, lock: Lock, holder: str, now: int) -> List[AggregateAccount]:
        """Ledgers crediting `holder` for this lock, synced to now."""
        since = self.clock.current_epoch_start(now)
        if holder == lock.owner:
            accounts = [self.store.owner(holder, since)]
        else:
            accounts = [
                self.store.delegate(holder, since),
                self.store.pair(lock.owner, holder, since),
            ]
        for account in accounts:
            self.sync.sync(account, now)
        return accounts

    def validate(
        self,
        action: DelegationAction,
        lock: Lock,
        caller: str,
        target: Optional[str],
        now: int
    ) -> None:
        """Raise unless `action` is allowed for this lock right now."""
        if caller != lock.owner:
            raise NotLockOwner(f"{caller} does not own lock {lock.id}")
        if lock.is_unlocked:
            raise LockAlreadyUnlocked(f"Lock {lock.id} is already unlocked")

        state = delegation_state(lock, now)
        if action is DelegationAction.DELEGATE:
            if state is not DelegationState.UNDELEGATED:
                raise LockAlreadyDelegated(f"Lock {lock.id} is delegated to {lock.delegate}")
        elif state is DelegationState.UNDELEGATED:
            raise LockNotDelegated(f"Lock {lock.id} is not delegated")

        if action is not DelegationAction.UNDELEGATE:
            if target == lock.owner:
                raise SelfDelegation(f"Lock {lock.id} cannot be delegated to its owner")
            if action is DelegationAction.SWITCH and target == lock.delegate:
                raise SameDelegate(f"Lock {lock.id} is already delegated to {target}")
            if target is None or not self.registry.is_registered(target):
                raise UnregisteredDelegate(f"{target} is not a registered delegate")

        # Final epochs are frozen: a new delegation would never activate in time
        if self.clock.remaining_epochs(lock.expiry, now) < self.min_delegation_epochs:
            raise LockExpiresTooSoon(
                f"Lock {lock.id} needs {self.min_delegation_epochs} whole epochs "
                f"remaining to change delegation"
            )

    def transition(
        self,
        action: DelegationAction,
        lock: Lock,
        caller: str,
        target: Optional[str],
        now: int
    ) -> int:
        """
        Apply a delegation transition.

        Args:
            action: delegate, switch or undelegate
            lock: Lock to transition
            caller: Account requesting the change
            target: New delegate (ignored for undelegate)
            now: Current timestamp

        Returns:
            Epoch start at which the transition takes effect
        """
        if action is DelegationAction.UNDELEGATE:
            target = None
        self.validate(action, lock, caller, target, now)

        activation = self.clock.next_epoch_start(now)
        outgoing = lock.future_holder
        incoming = target if target is not None else lock.owner
        outgoing_accounts = self.aggregates_for(lock, outgoing, now)
        incoming_accounts = self.aggregates_for(lock, incoming, now)

        self._book_transfer(lock, lock.balance, outgoing_accounts, incoming_accounts, activation)
        for account in outgoing_accounts:
            account.adjust_slope(lock.expiry, -lock.balance.slope)
        for account in incoming_accounts:
            account.adjust_slope(lock.expiry, lock.balance.slope)

        if now >= lock.delegation_epoch:
            lock.prior_holder = outgoing
        lock.delegate = target
        lock.delegation_epoch = activation
        lock.action_counts[action.value] += 1

        logger.info(
            "Lock %s %s: %s -> %s effective %d",
            lock.id, action.value, outgoing, incoming, activation
        )
        return activation

    def propagate(
        self,
        lock: Lock,
        delta: DecayBalance,
        now: int,
        old_expiry: Optional[int] = None
    ) -> List[AggregateAccount]:
        """
        Route a lock's balance change into the ledgers that credit it.

        The current holder sees the delta immediately. While a transition is
        pending the same delta is also booked for transfer to the future
        holder at activation.

        Args:
            lock: Lock after the change (lock.expiry is the new expiry)
            delta: Signed (bias, slope) change of the lock balance
            now: Current timestamp
            old_expiry: Previous expiry when the duration was extended

        Returns:
            Aggregates whose live balance changed
        """
        current = lock.current_holder(now)
        future = lock.future_holder
        current_accounts = self.aggregates_for(lock, current, now)
        future_accounts = (
            current_accounts if future == current else self.aggregates_for(lock, future, now)
        )

        for account in current_accounts:
            account.apply_delta(delta)
        for account in future_accounts:
            move_slope_adjustment(account, lock, delta, old_expiry)

        if future != current:
            self._book_transfer(
                lock, delta, current_accounts, future_accounts, lock.delegation_epoch
            )
        return current_accounts

    def _book_transfer(self, lock, balance, outgoing_accounts, incoming_accounts, epoch):
        for account in outgoing_accounts:
            account.book_pending(epoch, subtraction=balance)
        for account in incoming_accounts:
            account.book_pending(epoch, addition=balance)


def move_slope_adjustment(
    account: AggregateAccount,
    lock: Lock,
    delta: DecayBalance,
    old_expiry: Optional[int] = None
) -> None:
    """Keep an aggregate's expiry registry in step with a lock change."""
    if old_expiry is not None and old_expiry != lock.expiry:
        slope = lock.balance.slope
        account.adjust_slope(old_expiry, -slope)
        account.adjust_slope(lock.expiry, slope)
    else:
        account.adjust_slope(lock.expiry, delta.slope)
