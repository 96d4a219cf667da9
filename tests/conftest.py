"""Shared fixtures: a small-epoch escrow so expected values are easy to derive.

With epoch length 100s and a 5200s maximum term, a principal of 520_000
gives slope 100, so a lock expiring at t=1000 is worth 100 * (1000 - t).
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from vepower.config.schema import Config, EscrowParameters, SimulationParameters
from vepower.engine.collaborators import AccessControl, DelegateRegistry, EscrowRole
from vepower.engine.epochs import ManualClock
from vepower.engine.escrow import VotingEscrow

EPOCH = 100
MAX_TERM = 5200
PRINCIPAL = 520_000  # slope 100


def small_params(**overrides) -> EscrowParameters:
    values = dict(
        epoch_length_seconds=EPOCH,
        max_term_seconds=MAX_TERM,
        min_principal=MAX_TERM,
        min_lock_epochs=3,
        min_increase_epochs=1,
        min_delegation_epochs=2,
    )
    values.update(overrides)
    return EscrowParameters(**values)


def small_config(**simulation) -> Config:
    sim = dict(
        num_owners=6,
        num_delegates=3,
        num_epochs=30,
        actions_per_epoch=8,
        random_seed=7,
        principal_range=(MAX_TERM * 10, MAX_TERM * 1000),
    )
    sim.update(simulation)
    return Config(escrow=small_params(), simulation=SimulationParameters(**sim))


@pytest.fixture
def clock():
    return ManualClock(0, EPOCH)


@pytest.fixture
def escrow(clock):
    access = AccessControl(admin="admin")
    access.grant_role(EscrowRole.OPERATOR, "operator")
    access.grant_role(EscrowRole.SYNCER, "keeper")
    return VotingEscrow(
        params=small_params(),
        clock=clock,
        access=access,
        registry=DelegateRegistry(["dave", "erin"]),
    )
