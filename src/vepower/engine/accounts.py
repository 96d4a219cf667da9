"""Aggregate account store - global, per-owner, per-delegate and pair ledgers."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Optional, Set, Tuple

from .decay import ZERO, DecayBalance
from .errors import AccountingInvariantError


class Role(str, Enum):
    """Which ledger an aggregate belongs to."""
    GLOBAL = "global"
    OWNER = "owner"
    DELEGATE = "delegate"
    PAIR = "pair"


@dataclass
class PendingDelta:
    """Balance transfer booked now, applied when a sync crosses `epoch`."""
    epoch: int
    additions: DecayBalance = ZERO
    subtractions: DecayBalance = ZERO

    @property
    def has_addition(self) -> bool:
        return not self.additions.is_zero

    @property
    def has_subtraction(self) -> bool:
        return not self.subtractions.is_zero

    def apply_to(self, balance: DecayBalance) -> DecayBalance:
        # Additions first so chained same-epoch transfers never dip below zero
        return (balance + self.additions) - self.subtractions


@dataclass
class AggregateAccount:
    """One aggregate ledger entry.

    history is exact as of last_updated; slope_adjustments maps an expiry to
    the slope that stops decaying there.
    """
    role: Role
    key: Tuple[str, ...]
    history: DecayBalance = ZERO
    last_updated: int = 0
    slope_adjustments: Dict[int, int] = field(default_factory=dict)
    pending: Optional[PendingDelta] = None

    def apply_delta(self, delta: DecayBalance) -> None:
        """Add a signed delta to the live balance."""
        updated = self.history + delta
        if updated.is_negative:
            raise AccountingInvariantError(
                f"{self.role.value} aggregate {self.key} would become negative: {updated}"
            )
        self.history = updated

    def adjust_slope(self, expiry: int, slope: int) -> None:
        """Register (or withdraw, if negative) slope that expires at `expiry`."""
        if slope == 0:
            return
        remaining = self.slope_adjustments.get(expiry, 0) + slope
        if remaining < 0:
            raise AccountingInvariantError(
                f"{self.role.value} aggregate {self.key} slope adjustment at {expiry} "
                f"would become negative"
            )
        if remaining == 0:
            self.slope_adjustments.pop(expiry, None)
        else:
            self.slope_adjustments[expiry] = remaining

    def book_pending(self, epoch: int, addition: DecayBalance = ZERO,
                     subtraction: DecayBalance = ZERO) -> None:
        """
        Accumulate into the pending delta for `epoch`.

        The account must already be synchronized, so any pending delta still
        present is keyed to the same upcoming epoch.
        """
        if self.pending is None:
            self.pending = PendingDelta(epoch=epoch)
        elif self.pending.epoch != epoch:
            raise AccountingInvariantError(
                f"{self.role.value} aggregate {self.key} has a pending delta for "
                f"{self.pending.epoch}, cannot book for {epoch}"
            )
        self.pending.additions = self.pending.additions + addition
        self.pending.subtractions = self.pending.subtractions + subtraction


class AccountStore:
    """Four parallel aggregate ledgers plus the global supply snapshot table."""

    def __init__(self, start_time: int = 0):
        """
        Initialize account store.

        Args:
            start_time: Epoch start new aggregates are considered synced to
        """
        self.start_time = start_time
        self.global_account = AggregateAccount(role=Role.GLOBAL, key=(), last_updated=start_time)
        self.owners: Dict[str, AggregateAccount] = {}
        self.delegates: Dict[str, AggregateAccount] = {}
        self.pairs: Dict[Tuple[str, str], AggregateAccount] = {}
        self._pairs_by_owner: Dict[str, Set[str]] = {}
        self.supply_snapshots: Dict[int, int] = {}

    def owner(self, account: str, since: int = None, create: bool = True) -> Optional[AggregateAccount]:
        return self._lookup(self.owners, account, Role.OWNER, (account,), since, create)

    def delegate(self, account: str, since: int = None, create: bool = True) -> Optional[AggregateAccount]:
        return self._lookup(self.delegates, account, Role.DELEGATE, (account,), since, create)

    def pair(self, owner: str, delegate: str, since: int = None,
             create: bool = True) -> Optional[AggregateAccount]:
        entry = self._lookup(
            self.pairs, (owner, delegate), Role.PAIR, (owner, delegate), since, create
        )
        if entry is not None:
            self._pairs_by_owner.setdefault(owner, set()).add(delegate)
        return entry

    def account(self, account: str, as_delegate: bool, since: int = None,
                create: bool = True) -> Optional[AggregateAccount]:
        if as_delegate:
            return self.delegate(account, since, create)
        return self.owner(account, since, create)

    def delegates_of_owner(self, owner: str) -> Set[str]:
        return set(self._pairs_by_owner.get(owner, set()))

    def all_accounts(self) -> Iterator[AggregateAccount]:
        yield self.global_account
        yield from self.owners.values()
        yield from self.delegates.values()
        yield from self.pairs.values()

    def _lookup(self, table, key, role, account_key, since, create):
        # A fresh aggregate is empty, so it is exact from any epoch start on
        entry = table.get(key)
        if entry is None and create:
            start = self.start_time if since is None else since
            entry = AggregateAccount(role=role, key=account_key, last_updated=start)
            table[key] = entry
        return entry
