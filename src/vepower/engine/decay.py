"""Decay balance primitive - linear voting power as (bias, slope).

A quantity that decays linearly to zero at a target time T is stored as
    value(t) = bias - slope * t,  with bias = slope * T
so that sums of many such quantities stay a single (bias, slope) pair.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class DecayBalance:
    """Linear-decay quantity in absolute-time form."""
    bias: int = 0
    slope: int = 0

    @classmethod
    def for_lock(cls, total_principal: int, expiry: int, max_term: int) -> 'DecayBalance':
        """
        Balance of a single lock.

        Args:
            total_principal: Sum of both principal components
            expiry: Lock expiry timestamp
            max_term: Maximum lock term in seconds

        Returns:
            DecayBalance reaching exactly zero at expiry
        """
        slope = total_principal // max_term
        return cls(bias=slope * expiry, slope=slope)

    def value_at(self, t: int) -> int:
        """Evaluate at timestamp t, saturating at zero."""
        decayed = self.slope * t
        if decayed >= self.bias:
            return 0
        return self.bias - decayed

    @property
    def is_zero(self) -> bool:
        return self.bias == 0 and self.slope == 0

    @property
    def is_negative(self) -> bool:
        return self.bias < 0 or self.slope < 0

    def __add__(self, other: 'DecayBalance') -> 'DecayBalance':
        return DecayBalance(self.bias + other.bias, self.slope + other.slope)

    def __sub__(self, other: 'DecayBalance') -> 'DecayBalance':
        return DecayBalance(self.bias - other.bias, self.slope - other.slope)

    def __neg__(self) -> 'DecayBalance':
        return DecayBalance(-self.bias, -self.slope)


ZERO = DecayBalance()


def value_at(balance: DecayBalance, t: int) -> int:
    """Value of a balance at timestamp t (never negative)."""
    return balance.value_at(t)


def combine(a: DecayBalance, b: DecayBalance, subtract: bool = False) -> DecayBalance:
    """
    Component-wise combination of two balances.

    Args:
        a: Left operand
        b: Right operand
        subtract: Subtract b from a instead of adding

    Returns:
        Combined balance
    """
    return a - b if subtract else a + b


def rebase(balance: DecayBalance, t: int, slope_removed: int = 0) -> DecayBalance:
    """
    Re-express a balance evaluated at t after removing some slope.

    The value at t is kept; from t onward the balance decays with the
    reduced slope.
    """
    value = balance.value_at(t)
    slope = balance.slope - slope_removed
    return DecayBalance(bias=value + slope * t, slope=slope)
