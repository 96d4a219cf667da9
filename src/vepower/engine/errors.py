"""Error taxonomy for the voting escrow.

Every failure is raised before any store is mutated; nothing here is
retried by the engine itself.
"""


class EscrowError(Exception):
    """Base class for all escrow failures."""


# Input validation

class InputValidationError(EscrowError, ValueError):
    """Rejected input (amounts, timestamps, durations)."""


class InvalidEpochTime(InputValidationError):
    """Timestamp is not aligned to an epoch boundary."""


class AmountBelowMinimum(InputValidationError):
    """Locked principal is below the dust floor."""


class InvalidAmount(InputValidationError):
    """Amount increase is zero or negative."""


class InvalidDuration(InputValidationError):
    """Expiry is not in the future or does not extend the lock."""


class DurationTooShort(InputValidationError):
    """Lock term is below the minimum number of epochs."""


class DurationTooLong(InputValidationError):
    """Lock term exceeds the maximum term."""


# Authorization

class AuthorizationError(EscrowError):
    """Caller may not perform the requested action."""


class NotLockOwner(AuthorizationError):
    pass


class Unauthorized(AuthorizationError):
    """Caller lacks the required role."""


class UnregisteredDelegate(AuthorizationError):
    pass


class SelfDelegation(AuthorizationError):
    pass


# Lifecycle state

class LifecycleError(EscrowError):
    """Operation is invalid in the current lock or system state."""


class LockNotFound(LifecycleError, KeyError):
    pass


class LockAlreadyUnlocked(LifecycleError):
    pass


class LockNotExpired(LifecycleError):
    pass


class LockNotDelegated(LifecycleError):
    pass


class LockAlreadyDelegated(LifecycleError):
    pass


class SameDelegate(LifecycleError):
    pass


class OperationsHalted(LifecycleError):
    """System is paused or frozen."""


class NotFrozen(LifecycleError):
    """Emergency operation attempted while the system is not frozen."""


class QueryTimeTooEarly(LifecycleError):
    """Aggregate queried before its last synchronized epoch."""


# Timing eligibility

class TimingError(EscrowError):
    pass


class LockExpiresTooSoon(TimingError):
    """Not enough whole epochs remain before expiry."""


# Custody and internal consistency

class TransferFailed(EscrowError):
    """Custody could not move the principal."""


class AccountingInvariantError(EscrowError):
    """An aggregate would become negative."""
