"""External collaborators - authorization, admin lifecycle, custody, notifications.

In-memory implementations; the escrow only calls the methods defined here.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Set

from .errors import NotFrozen, OperationsHalted, TransferFailed, Unauthorized

logger = logging.getLogger(__name__)


class EscrowRole(str, Enum):
    ADMIN = "admin"
    OPERATOR = "operator"
    SYNCER = "syncer"


class AccessControl:
    """Role membership per account."""

    def __init__(self, admin: Optional[str] = None):
        self._members: Dict[EscrowRole, Set[str]] = {role: set() for role in EscrowRole}
        if admin is not None:
            self.grant_role(EscrowRole.ADMIN, admin)

    def grant_role(self, role: EscrowRole, account: str) -> None:
        self._members[EscrowRole(role)].add(account)

    def revoke_role(self, role: EscrowRole, account: str) -> None:
        self._members[EscrowRole(role)].discard(account)

    def has_role(self, role: EscrowRole, account: str) -> bool:
        return account in self._members[EscrowRole(role)]

    def require_role(self, role: EscrowRole, account: str) -> None:
        if not self.has_role(role, account):
            raise Unauthorized(f"{account} lacks role {EscrowRole(role).value}")


class DelegateRegistry:
    """Accounts eligible to receive delegated voting power."""

    def __init__(self, delegates=None):
        self._registered: Set[str] = set(delegates or [])

    def register(self, account: str) -> None:
        self._registered.add(account)

    def unregister(self, account: str) -> None:
        self._registered.discard(account)

    def is_registered(self, account: str) -> bool:
        return account in self._registered

    def __iter__(self):
        return iter(sorted(self._registered))


class SystemStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    FROZEN = "frozen"  # terminal


class AdminLifecycle:
    """Pause/freeze gate consulted by every mutating operation."""

    def __init__(self):
        self.status = SystemStatus.ACTIVE

    def pause(self) -> None:
        self._require_not_frozen()
        self.status = SystemStatus.PAUSED
        logger.warning("Escrow paused")

    def unpause(self) -> None:
        self._require_not_frozen()
        self.status = SystemStatus.ACTIVE
        logger.info("Escrow unpaused")

    def freeze(self) -> None:
        self.status = SystemStatus.FROZEN
        logger.warning("Escrow frozen")

    def require_active(self) -> None:
        if self.status is not SystemStatus.ACTIVE:
            raise OperationsHalted(f"Escrow is {self.status.value}")

    def require_frozen(self) -> None:
        if self.status is not SystemStatus.FROZEN:
            raise NotFrozen(f"Escrow is {self.status.value}, not frozen")

    def _require_not_frozen(self) -> None:
        if self.status is SystemStatus.FROZEN:
            raise OperationsHalted("Escrow is frozen permanently")


class Custody(Protocol):
    """Moves the two principal components in and out of escrow."""

    def deposit(self, source: str, amount_a: int, amount_b: int) -> None: ...

    def withdraw(self, recipient: str, amount_a: int, amount_b: int) -> None: ...


class InMemoryCustody:
    """Wallet balances plus escrowed totals.

    With enforce_balances=False deposits always succeed, which is what
    simulations and most tests want.
    """

    def __init__(self, enforce_balances: bool = False):
        self.enforce_balances = enforce_balances
        self.wallets: Dict[str, List[int]] = {}
        self.held_a = 0
        self.held_b = 0

    def fund(self, account: str, amount_a: int = 0, amount_b: int = 0) -> None:
        wallet = self.wallets.setdefault(account, [0, 0])
        wallet[0] += amount_a
        wallet[1] += amount_b

    def balance_of(self, account: str) -> tuple[int, int]:
        wallet = self.wallets.get(account, [0, 0])
        return wallet[0], wallet[1]

    def deposit(self, source: str, amount_a: int, amount_b: int) -> None:
        wallet = self.wallets.setdefault(source, [0, 0])
        if self.enforce_balances and (wallet[0] < amount_a or wallet[1] < amount_b):
            raise TransferFailed(
                f"{source} cannot deposit {amount_a}/{amount_b}; holds {wallet[0]}/{wallet[1]}"
            )
        wallet[0] = max(0, wallet[0] - amount_a)
        wallet[1] = max(0, wallet[1] - amount_b)
        self.held_a += amount_a
        self.held_b += amount_b

    def withdraw(self, recipient: str, amount_a: int, amount_b: int) -> None:
        if self.held_a < amount_a or self.held_b < amount_b:
            raise TransferFailed(
                f"Escrow holds {self.held_a}/{self.held_b}, cannot release {amount_a}/{amount_b}"
            )
        self.held_a -= amount_a
        self.held_b -= amount_b
        self.fund(recipient, amount_a, amount_b)


@dataclass
class ChangeRecord:
    """Structured change notification."""
    kind: str
    timestamp: int
    lock_id: Optional[str] = None
    account: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class EventLog:
    """Collects change records and mirrors them to the log."""

    def __init__(self):
        self.records: List[ChangeRecord] = []

    def emit(self, kind: str, timestamp: int, lock_id: str = None,
             account: str = None, **data) -> ChangeRecord:
        record = ChangeRecord(kind=kind, timestamp=timestamp, lock_id=lock_id,
                              account=account, data=data)
        self.records.append(record)
        logger.info("%s lock=%s account=%s %s", kind, lock_id, account, data)
        return record

    def of_kind(self, kind: str) -> List[ChangeRecord]:
        return [r for r in self.records if r.kind == kind]

    def __len__(self) -> int:
        return len(self.records)
