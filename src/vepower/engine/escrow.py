"""Lock lifecycle orchestration - the voting escrow entry point.

Every mutating operation follows the same order:
1. consult the admin lifecycle gate and authorization
2. validate inputs against the lock ledger (nothing mutated yet)
3. move principal through custody
4. synchronize the global aggregate and the credited aggregates
5. apply the balance delta, update slope registries, book pending deltas
6. emit change records
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..config.schema import Config, EscrowParameters
from .accounts import AccountStore, AggregateAccount
from .collaborators import (
    AccessControl,
    AdminLifecycle,
    Custody,
    DelegateRegistry,
    EscrowRole,
    EventLog,
    InMemoryCustody,
)
from .decay import DecayBalance
from .delegation import (
    DelegationAction,
    DelegationManager,
    DelegationState,
    delegation_state,
)
from .epochs import Clock, EpochClock, ManualClock
from .errors import InvalidEpochTime
from .locks import ForcedUnlockResult, Lock, LockLedger
from .sync import SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class LockRequest:
    """One entry of a batched create-on-behalf call."""
    owner: str
    amount_a: int
    amount_b: int
    expiry: int


class VotingEscrow:
    """Time-decaying, lock-based voting power ledger with deferred delegation."""

    def __init__(
        self,
        params: EscrowParameters = None,
        clock: Clock = None,
        access: AccessControl = None,
        registry: DelegateRegistry = None,
        lifecycle: AdminLifecycle = None,
        custody: Custody = None,
        events: EventLog = None
    ):
        """
        Initialize voting escrow.

        Args:
            params: Escrow parameters (defaults to EscrowParameters())
            clock: Time source exposing now() (defaults to a ManualClock at 0)
            access: Role registry
            registry: Registered delegate accounts
            lifecycle: Pause/freeze gate
            custody: Principal transport (deposit/withdraw)
            events: Change record sink
        """
        self.params = params or EscrowParameters()
        self.clock = clock or ManualClock(0, self.params.epoch_length_seconds)
        self.epochs = EpochClock(self.params.epoch_length_seconds)
        self.access = access or AccessControl()
        self.registry = registry or DelegateRegistry()
        self.lifecycle = lifecycle or AdminLifecycle()
        self.custody = custody or InMemoryCustody()
        self.events = events or EventLog()

        self.ledger = LockLedger(
            clock=self.epochs,
            max_term=self.params.max_term_seconds,
            min_principal=self.params.min_principal,
            min_lock_epochs=self.params.min_lock_epochs,
            min_increase_epochs=self.params.min_increase_epochs,
        )
        self.store = AccountStore(start_time=self.epochs.current_epoch_start(self.now()))

        self.sync_engine = SyncEngine(self.epochs, self.store)
        self.delegation = DelegationManager(
            clock=self.epochs,
            store=self.store,
            sync=self.sync_engine,
            registry=self.registry,
            min_delegation_epochs=self.params.min_delegation_epochs,
        )

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> 'VotingEscrow':
        return cls(params=config.escrow, **kwargs)

    def now(self) -> int:
        return self.clock.now()

    # Lock lifecycle

    def create_lock(self, owner: str, amount_a: int, amount_b: int, expiry: int) -> str:
        """
        Lock principal until expiry.

        Args:
            owner: Account owning the lock
            amount_a: First principal component
            amount_b: Second principal component
            expiry: Epoch-aligned expiry timestamp

        Returns:
            The new lock id
        """
        self.lifecycle.require_active()
        now = self.now()
        self.ledger.validate_create(amount_a, amount_b, expiry, now)
        self.custody.deposit(owner, amount_a, amount_b)
        lock = self._open_lock(owner, amount_a, amount_b, expiry, now)
        return lock.id

    def create_locks_for(self, caller: str, requests: Sequence[LockRequest]) -> List[str]:
        """
        Create locks on behalf of many owners, funded by the caller.

        All requests are validated before any lock is created.
        """
        self.lifecycle.require_active()
        self.access.require_role(EscrowRole.OPERATOR, caller)
        now = self.now()
        for request in requests:
            self.ledger.validate_create(request.amount_a, request.amount_b, request.expiry, now)

        total_a = sum(r.amount_a for r in requests)
        total_b = sum(r.amount_b for r in requests)
        self.custody.deposit(caller, total_a, total_b)

        lock_ids = [
            self._open_lock(r.owner, r.amount_a, r.amount_b, r.expiry, now).id
            for r in requests
        ]
        logger.info("%s created %d locks on behalf of owners", caller, len(lock_ids))
        return lock_ids

    def increase_amount(self, lock_id: str, caller: str, add_a: int, add_b: int) -> DecayBalance:
        """Add principal to a lock; returns the applied (bias, slope) delta."""
        self.lifecycle.require_active()
        now = self.now()
        lock = self.ledger.get(lock_id)
        self.ledger.validate_increase_amount(lock, caller, add_a, add_b, now)
        self.custody.deposit(caller, add_a, add_b)

        self._sync_global(now)
        delta = self.ledger.increase_amount(lock_id, caller, add_a, add_b, now)
        self._apply_global(delta, lock.expiry, slope_delta=delta.slope)
        touched = self.delegation.propagate(lock, delta, now)

        self.events.emit('amount_increased', now, lock_id=lock.id, account=caller,
                         amount_a=add_a, amount_b=add_b, bias=delta.bias, slope=delta.slope)
        self._emit_balances(touched, now, lock.id)
        return delta

    def increase_duration(self, lock_id: str, caller: str, new_expiry: int) -> DecayBalance:
        """Extend a lock's expiry; returns the applied (bias, 0) delta."""
        self.lifecycle.require_active()
        now = self.now()
        lock = self.ledger.get(lock_id)
        self.ledger.validate_increase_duration(lock, caller, new_expiry, now)

        self._sync_global(now)
        old_expiry = lock.expiry
        delta = self.ledger.increase_duration(lock_id, caller, new_expiry, now)
        self.store.global_account.apply_delta(delta)
        self.store.global_account.adjust_slope(old_expiry, -lock.balance.slope)
        self.store.global_account.adjust_slope(new_expiry, lock.balance.slope)
        touched = self.delegation.propagate(lock, delta, now, old_expiry=old_expiry)

        self.events.emit('duration_increased', now, lock_id=lock.id, account=caller,
                         old_expiry=old_expiry, new_expiry=new_expiry, bias=delta.bias)
        self._emit_balances(touched, now, lock.id)
        return delta

    def unlock(self, lock_id: str, caller: str) -> Tuple[int, int]:
        """
        Return the principal of an expired lock to its owner.

        Aggregates are not touched: the lock's slope already left every
        ledger at its expiry.
        """
        self.lifecycle.require_active()
        now = self.now()
        lock = self.ledger.get(lock_id)
        self.ledger.validate_unlock(lock, caller, now)
        self.custody.withdraw(lock.owner, lock.amount_a, lock.amount_b)
        amount_a, amount_b = self.ledger.unlock(lock_id, caller, now)

        self.events.emit('unlocked', now, lock_id=lock.id, account=lock.owner,
                         amount_a=amount_a, amount_b=amount_b)
        return amount_a, amount_b

    def forced_unlock(self, caller: str, lock_ids: Iterable[str]) -> ForcedUnlockResult:
        """
        Release locks in bulk once the escrow is frozen.

        Locks that have not expired yet also leave every aggregate that
        credits them, so total supply only counts locks still held.
        """
        self.lifecycle.require_frozen()
        self.access.require_role(EscrowRole.ADMIN, caller)
        now = self.now()
        lock_ids = list(dict.fromkeys(lock_ids))
        locks = [self.ledger.get(lock_id) for lock_id in lock_ids]
        open_locks = [lock for lock in locks if not lock.is_unlocked]

        owed: Dict[str, List[int]] = {}
        for lock in open_locks:
            amounts = owed.setdefault(lock.owner, [0, 0])
            amounts[0] += lock.amount_a
            amounts[1] += lock.amount_b
        for owner, (amount_a, amount_b) in owed.items():
            self.custody.withdraw(owner, amount_a, amount_b)

        self._sync_global(now)
        for lock in open_locks:
            if lock.expiry > now:
                self._retire(lock, now)

        result = self.ledger.forced_unlock(lock_ids, now)
        for lock_id in result.lock_ids:
            self.events.emit('unlocked', now, lock_id=lock_id, account=caller, forced=True)
        logger.warning("Forced unlock of %d locks by %s", result.count, caller)
        return result

    # Delegation

    def delegate(self, lock_id: str, caller: str, target: str) -> int:
        """Delegate an undelegated lock; returns the activation epoch start."""
        return self._transition(DelegationAction.DELEGATE, lock_id, caller, target)

    def switch_delegate(self, lock_id: str, caller: str, new_target: str) -> int:
        return self._transition(DelegationAction.SWITCH, lock_id, caller, new_target)

    def undelegate(self, lock_id: str, caller: str) -> int:
        return self._transition(DelegationAction.UNDELEGATE, lock_id, caller, None)

    def delegation_state(self, lock_id: str, at: int = None) -> DelegationState:
        return delegation_state(self.ledger.get(lock_id), self._at(at))

    def _transition(self, action, lock_id, caller, target) -> int:
        self.lifecycle.require_active()
        now = self.now()
        lock = self.ledger.get(lock_id)
        previous = lock.delegate
        self.delegation.validate(action, lock, caller, target, now)
        activation = self.delegation.transition(action, lock, caller, target, now)
        self.events.emit('delegation_changed', now, lock_id=lock.id, account=caller,
                         action=action.value, previous=previous, delegate=lock.delegate,
                         activation=activation)
        return activation

    # Synchronization

    def sync_account(self, account: str, as_delegate: bool = False) -> bool:
        """Bring an owner (or delegate) aggregate up to the current epoch."""
        self.lifecycle.require_active()
        now = self.now()
        aggregate = self.store.account(account, as_delegate, create=False)
        if aggregate is None:
            return True
        return self.sync_engine.sync(aggregate, now)

    def sync_pair(self, owner: str, delegate: str) -> bool:
        self.lifecycle.require_active()
        now = self.now()
        aggregate = self.store.pair(owner, delegate, create=False)
        if aggregate is None:
            return True
        return self.sync_engine.sync(aggregate, now)

    def sync_accounts(self, caller: str, accounts: Iterable[str],
                      as_delegate: bool = False) -> Dict[str, bool]:
        """
        Batch sync for external schedulers.

        Each account advances at most max_sync_epochs epochs per call.

        Returns:
            Mapping of account to whether it is fully caught up
        """
        self.lifecycle.require_active()
        self.access.require_role(EscrowRole.SYNCER, caller)
        now = self.now()
        results = {}
        for account in accounts:
            aggregate = self.store.account(account, as_delegate, create=False)
            results[account] = aggregate is None or self.sync_engine.sync(
                aggregate, now, max_epochs=self.params.max_sync_epochs
            )
        self._sync_global(now)
        return results

    def sync_pairs(self, caller: str,
                   pairs: Iterable[Tuple[str, str]]) -> Dict[Tuple[str, str], bool]:
        self.lifecycle.require_active()
        self.access.require_role(EscrowRole.SYNCER, caller)
        now = self.now()
        results = {}
        for owner, delegate in pairs:
            aggregate = self.store.pair(owner, delegate, create=False)
            results[(owner, delegate)] = aggregate is None or self.sync_engine.sync(
                aggregate, now, max_epochs=self.params.max_sync_epochs
            )
        return results

    # Queries

    def lock_voting_power(self, lock_id: str, at: int = None) -> int:
        return self.ledger.lock_value_at(lock_id, self._at(at))

    def voting_power(self, account: str, at: int = None, exclude_delegated: bool = False) -> int:
        """
        Power credited to an account: its own undelegated locks plus, unless
        exclude_delegated, power delegated to it.
        """
        at = self._at(at)
        power = self._aggregate_value(self.store.owner(account, create=False), at)
        if not exclude_delegated:
            power += self._aggregate_value(self.store.delegate(account, create=False), at)
        return power

    def owned_voting_power(self, owner: str, at: int = None) -> int:
        """Power of every lock the owner holds, including delegated-away locks."""
        at = self._at(at)
        power = self._aggregate_value(self.store.owner(owner, create=False), at)
        for delegate in self.store.delegates_of_owner(owner):
            power += self.pair_voting_power(owner, delegate, at)
        return power

    def delegated_voting_power(self, delegate: str, at: int = None) -> int:
        return self._aggregate_value(self.store.delegate(delegate, create=False), self._at(at))

    def pair_voting_power(self, owner: str, delegate: str, at: int = None) -> int:
        return self._aggregate_value(self.store.pair(owner, delegate, create=False), self._at(at))

    def total_supply(self, at: int = None) -> int:
        return self.sync_engine.value_at(self.store.global_account, self._at(at))

    def total_supply_at_epoch(self, epoch: int) -> int:
        """
        Total voting power at the start of an epoch.

        Snapshots are memoized when the global sync crosses an epoch; an
        epoch not yet crossed is projected from the live aggregate.
        """
        start = self.epochs.epoch_start(epoch)
        if start > self.now():
            raise InvalidEpochTime(f"Epoch {epoch} has not started")
        if epoch in self.store.supply_snapshots:
            return self.store.supply_snapshots[epoch]
        global_account = self.store.global_account
        if start >= global_account.last_updated:
            return self.sync_engine.value_at(global_account, start)
        return 0

    def locks_of(self, owner: str) -> List[Lock]:
        return self.ledger.locks_of(owner)

    # Internals

    def _open_lock(self, owner, amount_a, amount_b, expiry, now) -> Lock:
        self._sync_global(now)
        lock = self.ledger.create_lock(owner, amount_a, amount_b, expiry, now)
        self._apply_global(lock.balance, expiry, slope_delta=lock.balance.slope)
        touched = self.delegation.propagate(lock, lock.balance, now)
        self.events.emit('lock_created', now, lock_id=lock.id, account=owner,
                         amount_a=amount_a, amount_b=amount_b, expiry=expiry,
                         bias=lock.balance.bias, slope=lock.balance.slope)
        self._emit_balances(touched, now, lock.id)
        return lock

    def _sync_global(self, now: int) -> None:
        self.sync_engine.sync(self.store.global_account, now)

    def _apply_global(self, delta: DecayBalance, expiry: int, slope_delta: int) -> None:
        self.store.global_account.apply_delta(delta)
        self.store.global_account.adjust_slope(expiry, slope_delta)

    def _retire(self, lock: Lock, now: int) -> None:
        """Withdraw a live lock's balance from the global and credited aggregates."""
        removed = -lock.balance
        self._apply_global(removed, lock.expiry, slope_delta=removed.slope)
        touched = self.delegation.propagate(lock, removed, now)
        self._emit_balances(touched, now, lock.id)

    def _aggregate_value(self, aggregate: Optional[AggregateAccount], at: int) -> int:
        if aggregate is None:
            return 0
        return self.sync_engine.value_at(aggregate, at)

    def _emit_balances(self, accounts: List[AggregateAccount], now: int, lock_id: str) -> None:
        for account in accounts:
            self.events.emit('balance_updated', now, lock_id=lock_id,
                             account='/'.join(account.key), role=account.role.value,
                             bias=account.history.bias, slope=account.history.slope)

    def _at(self, at: Optional[int]) -> int:
        return self.now() if at is None else at
