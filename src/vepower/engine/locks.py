"""Lock ledger - lock records and their append-only checkpoint history."""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from .decay import ZERO, DecayBalance
from .epochs import EpochClock
from .errors import (
    AmountBelowMinimum,
    DurationTooLong,
    DurationTooShort,
    InvalidAmount,
    InvalidDuration,
    LockAlreadyUnlocked,
    LockExpiresTooSoon,
    LockNotExpired,
    LockNotFound,
    NotLockOwner,
)

logger = logging.getLogger(__name__)


@dataclass
class Checkpoint:
    """Lock balance as of a timestamp."""
    balance: DecayBalance
    timestamp: int


@dataclass
class Lock:
    """A locked position.

    Voting credit semantics:
    - prior_holder: account credited with the lock until delegation_epoch
    - delegate: account credited from delegation_epoch on (None = owner)
    - delegation_epoch: epoch start at which the latest transition applies
    """
    id: str
    owner: str
    amount_a: int
    amount_b: int
    expiry: int
    balance: DecayBalance
    created_at: int
    delegate: Optional[str] = None
    prior_holder: Optional[str] = None
    delegation_epoch: int = 0
    is_unlocked: bool = False
    checkpoints: List[Checkpoint] = field(default_factory=list)
    action_counts: Dict[str, int] = field(
        default_factory=lambda: {'delegate': 0, 'switch': 0, 'undelegate': 0}
    )

    def __post_init__(self):
        if self.prior_holder is None:
            self.prior_holder = self.owner

    @property
    def total_principal(self) -> int:
        return self.amount_a + self.amount_b

    @property
    def future_holder(self) -> str:
        """Account credited once every booked transition has applied."""
        return self.delegate if self.delegate is not None else self.owner

    def current_holder(self, now: int) -> str:
        """Account credited with the lock at time now."""
        if now >= self.delegation_epoch:
            return self.future_holder
        return self.prior_holder

    def value_at(self, t: int) -> int:
        """Voting power of this lock at t, read from checkpoint history."""
        checkpoint = None
        for cp in reversed(self.checkpoints):
            if cp.timestamp <= t:
                checkpoint = cp
                break
        if checkpoint is None:
            return 0
        return checkpoint.balance.value_at(t)


@dataclass
class ForcedUnlockResult:
    """Totals released by a forced unlock batch."""
    count: int = 0
    amount_a: int = 0
    amount_b: int = 0
    lock_ids: List[str] = field(default_factory=list)


class LockLedger:
    """Owns lock records.

    Validation methods raise before anything is mutated; the mutating
    methods re-run their validation so they are safe to call directly.
    """

    def __init__(
        self,
        clock: EpochClock,
        max_term: int,
        min_principal: int,
        min_lock_epochs: int = 3,
        min_increase_epochs: int = 1
    ):
        """
        Initialize lock ledger.

        Args:
            clock: Epoch clock
            max_term: Maximum lock term in seconds
            min_principal: Dust floor for total principal
            min_lock_epochs: Minimum whole epochs of term at creation
            min_increase_epochs: Whole epochs that must remain for increases
        """
        self.clock = clock
        self.max_term = max_term
        self.min_principal = min_principal
        self.min_lock_epochs = min_lock_epochs
        self.min_increase_epochs = min_increase_epochs
        self._locks: Dict[str, Lock] = {}
        self._by_owner: Dict[str, List[str]] = {}
        self._nonce = 0

    def __len__(self) -> int:
        return len(self._locks)

    def __iter__(self) -> Iterator[Lock]:
        return iter(self._locks.values())

    def __contains__(self, lock_id: str) -> bool:
        return lock_id in self._locks

    def get(self, lock_id: str) -> Lock:
        try:
            return self._locks[lock_id]
        except KeyError:
            raise LockNotFound(f"Unknown lock {lock_id}") from None

    def locks_of(self, owner: str) -> List[Lock]:
        return [self._locks[i] for i in self._by_owner.get(owner, [])]

    def lock_value_at(self, lock_id: str, t: int) -> int:
        return self.get(lock_id).value_at(t)

    # Validation

    def validate_create(self, amount_a: int, amount_b: int, expiry: int, now: int) -> None:
        if amount_a < 0 or amount_b < 0:
            raise InvalidAmount("Principal components must be non-negative")
        total = amount_a + amount_b
        if total < self.min_principal:
            raise AmountBelowMinimum(
                f"Total principal {total} is below minimum {self.min_principal}"
            )
        self.clock.require_aligned(expiry)
        self._validate_term(expiry, now)
        if self.clock.remaining_epochs(expiry, now) < self.min_lock_epochs:
            raise DurationTooShort(
                f"Lock term must span at least {self.min_lock_epochs} whole epochs"
            )

    def validate_increase_amount(
        self, lock: Lock, caller: str, add_a: int, add_b: int, now: int
    ) -> None:
        self._validate_mutable(lock, caller, now)
        if add_a < 0 or add_b < 0 or add_a + add_b == 0:
            raise InvalidAmount("Amount increase must be positive")

    def validate_increase_duration(
        self, lock: Lock, caller: str, new_expiry: int, now: int
    ) -> None:
        self._validate_mutable(lock, caller, now)
        self.clock.require_aligned(new_expiry)
        if new_expiry <= lock.expiry:
            raise InvalidDuration(
                f"New expiry {new_expiry} must be later than {lock.expiry}"
            )
        self._validate_term(new_expiry, now)

    def validate_unlock(self, lock: Lock, caller: str, now: int) -> None:
        if caller != lock.owner:
            raise NotLockOwner(f"{caller} does not own lock {lock.id}")
        if lock.is_unlocked:
            raise LockAlreadyUnlocked(f"Lock {lock.id} is already unlocked")
        if lock.expiry > now:
            raise LockNotExpired(f"Lock {lock.id} expires at {lock.expiry}")

    def _validate_term(self, expiry: int, now: int) -> None:
        if expiry <= now:
            raise InvalidDuration(f"Expiry {expiry} is not in the future")
        if expiry - now > self.max_term:
            raise DurationTooLong(
                f"Lock term {expiry - now}s exceeds maximum {self.max_term}s"
            )

    def _validate_mutable(self, lock: Lock, caller: str, now: int) -> None:
        if caller != lock.owner:
            raise NotLockOwner(f"{caller} does not own lock {lock.id}")
        if lock.is_unlocked:
            raise LockAlreadyUnlocked(f"Lock {lock.id} is already unlocked")
        if self.clock.remaining_epochs(lock.expiry, now) < self.min_increase_epochs:
            raise LockExpiresTooSoon(
                f"Lock {lock.id} needs {self.min_increase_epochs} whole epochs remaining"
            )

    # Mutations

    def create_lock(
        self, owner: str, amount_a: int, amount_b: int, expiry: int, now: int
    ) -> Lock:
        """
        Create a lock and record its first checkpoint.

        Returns:
            The new Lock
        """
        self.validate_create(amount_a, amount_b, expiry, now)

        lock_id = self._derive_id(owner, now)
        balance = DecayBalance.for_lock(amount_a + amount_b, expiry, self.max_term)
        lock = Lock(
            id=lock_id,
            owner=owner,
            amount_a=amount_a,
            amount_b=amount_b,
            expiry=expiry,
            balance=balance,
            created_at=now,
        )
        self._write_checkpoint(lock, now)
        self._locks[lock_id] = lock
        self._by_owner.setdefault(owner, []).append(lock_id)
        logger.debug("Created lock %s for %s (slope=%d)", lock_id, owner, balance.slope)
        return lock

    def increase_amount(
        self, lock_id: str, caller: str, add_a: int, add_b: int, now: int
    ) -> DecayBalance:
        """Add principal; returns the signed (bias, slope) delta."""
        lock = self.get(lock_id)
        self.validate_increase_amount(lock, caller, add_a, add_b, now)

        lock.amount_a += add_a
        lock.amount_b += add_b
        new_balance = DecayBalance.for_lock(lock.total_principal, lock.expiry, self.max_term)
        return self._rebalance(lock, new_balance, now)

    def increase_duration(
        self, lock_id: str, caller: str, new_expiry: int, now: int
    ) -> DecayBalance:
        """Extend expiry; slope is unchanged so only bias moves."""
        lock = self.get(lock_id)
        self.validate_increase_duration(lock, caller, new_expiry, now)

        lock.expiry = new_expiry
        new_balance = DecayBalance(bias=lock.balance.slope * new_expiry, slope=lock.balance.slope)
        return self._rebalance(lock, new_balance, now)

    def unlock(self, lock_id: str, caller: str, now: int) -> tuple[int, int]:
        """Settle an expired lock; returns (amount_a, amount_b) owed to the owner."""
        lock = self.get(lock_id)
        self.validate_unlock(lock, caller, now)
        return self._settle(lock, now)

    def forced_unlock(self, lock_ids: List[str], now: int) -> ForcedUnlockResult:
        """
        Settle locks regardless of owner or expiry, skipping settled ones.

        A lock released before its expiry gets a zero final checkpoint.
        """
        locks = [self.get(lock_id) for lock_id in dict.fromkeys(lock_ids)]
        result = ForcedUnlockResult()
        for lock in locks:
            if lock.is_unlocked:
                continue
            amount_a, amount_b = self._settle(lock, now)
            result.count += 1
            result.amount_a += amount_a
            result.amount_b += amount_b
            result.lock_ids.append(lock.id)
        return result

    def _settle(self, lock: Lock, now: int) -> tuple[int, int]:
        if lock.expiry > now:
            # Released early: power drops to zero from now on
            lock.balance = ZERO
            lock.checkpoints.append(Checkpoint(balance=ZERO, timestamp=now))
        else:
            # Final checkpoint keeps the pre-zero balance for audit
            self._write_checkpoint(lock, now)
        amounts = (lock.amount_a, lock.amount_b)
        lock.amount_a = 0
        lock.amount_b = 0
        lock.is_unlocked = True
        return amounts

    def _rebalance(self, lock: Lock, new_balance: DecayBalance, now: int) -> DecayBalance:
        delta = new_balance - lock.balance
        lock.balance = new_balance
        self._write_checkpoint(lock, now)
        return delta

    def _write_checkpoint(self, lock: Lock, now: int) -> None:
        checkpoint = Checkpoint(balance=lock.balance, timestamp=now)
        if lock.checkpoints:
            last = lock.checkpoints[-1]
            if self.clock.epoch_number(last.timestamp) == self.clock.epoch_number(now):
                # One checkpoint per epoch; keep the epoch's first timestamp
                lock.checkpoints[-1] = Checkpoint(balance=lock.balance, timestamp=last.timestamp)
                return
        lock.checkpoints.append(checkpoint)

    def _derive_id(self, owner: str, now: int) -> str:
        self._nonce += 1
        seed = f"{owner}:{self._nonce}:{now}"
        return hashlib.sha256(seed.encode()).hexdigest()[:16]
