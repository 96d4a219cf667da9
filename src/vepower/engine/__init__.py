"""Decay-balance accounting engine."""

from .decay import DecayBalance, combine, value_at
from .delegation import DelegationState
from .epochs import EpochClock, ManualClock
from .escrow import LockRequest, VotingEscrow

__all__ = [
    "DecayBalance",
    "DelegationState",
    "EpochClock",
    "LockRequest",
    "ManualClock",
    "VotingEscrow",
    "combine",
    "value_at",
]
