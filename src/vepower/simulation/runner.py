"""Simulation runner - drive a voting escrow with seeded random activity.

Each simulated epoch either passes idle (so accounts go stale across
several epochs) or runs a batch of randomly chosen lifecycle and
delegation actions at increasing times within the epoch. Rejections are
expected and counted; invariants are checked at the end of every epoch.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from ..config.schema import Config
from ..engine.collaborators import DelegateRegistry
from ..engine.delegation import DelegationState, delegation_state
from ..engine.epochs import ManualClock
from ..engine.errors import AccountingInvariantError, EscrowError
from ..engine.escrow import VotingEscrow
from ..validation.sanity_checks import SanityChecker

logger = logging.getLogger(__name__)

ACTIONS = [
    'create',
    'increase_amount',
    'increase_duration',
    'delegate',
    'switch',
    'undelegate',
    'unlock',
]


@dataclass
class SimulationResult:
    """Complete simulation result."""
    config: Config
    escrow: VotingEscrow
    metrics_over_time: List[Dict[str, Any]]
    final_metrics: Dict[str, Any]
    invariant_errors: List[str] = field(default_factory=list)
    rejections: Dict[str, int] = field(default_factory=dict)


class SimulationRunner:
    """Seeded random driver for a VotingEscrow."""

    def __init__(self, config: Config):
        """
        Initialize simulation runner.

        Args:
            config: Escrow and simulation configuration
        """
        self.config = config
        sim = config.simulation
        self.owners = [f"owner-{i}" for i in range(sim.num_owners)]
        self.delegates = [f"delegate-{i}" for i in range(sim.num_delegates)]
        self.clock = ManualClock(0, config.escrow.epoch_length_seconds)
        self.escrow = VotingEscrow.from_config(
            config,
            clock=self.clock,
            registry=DelegateRegistry(self.delegates),
        )
        self.checker = SanityChecker(config.escrow)

        weights = np.array([sim.action_weights.as_dict()[a] for a in ACTIONS], dtype=float)
        self._action_probs = weights / weights.sum()

    def run(self, random_seed: int = None) -> SimulationResult:
        """
        Run the simulation.

        Args:
            random_seed: Random seed for reproducibility

        Returns:
            Simulation result
        """
        sim = self.config.simulation
        if random_seed is not None:
            np.random.seed(random_seed)
        else:
            np.random.seed(sim.random_seed)

        epoch_length = self.config.escrow.epoch_length_seconds
        metrics_over_time = []
        invariant_errors = []
        rejections: Counter = Counter()

        for epoch in range(sim.num_epochs):
            epoch_start = epoch * epoch_length
            self.clock.set(max(self.clock.now(), epoch_start))
            applied = 0
            rejected = 0

            if np.random.random() >= sim.idle_epoch_probability:
                offsets = np.sort(np.random.randint(0, epoch_length, size=sim.actions_per_epoch))
                for offset in offsets:
                    self.clock.set(max(self.clock.now(), epoch_start + int(offset)))
                    action = ACTIONS[np.random.choice(len(ACTIONS), p=self._action_probs)]
                    try:
                        if self._perform(action):
                            applied += 1
                    except AccountingInvariantError:
                        raise
                    except EscrowError as e:
                        rejected += 1
                        rejections[type(e).__name__] += 1

            for warning in self.checker.check_escrow(self.escrow):
                if warning.severity == "error":
                    invariant_errors.append(f"epoch {epoch}: {warning.message} ({warning.details})")

            metrics = self._compute_metrics(epoch, applied, rejected)
            metrics_over_time.append(metrics)

        # Advance one more epoch so the last boundary is memoized
        self.clock.set(sim.num_epochs * epoch_length)
        self.escrow.sync_engine.sync(self.escrow.store.global_account, self.clock.now())

        final_metrics = self._compute_final_metrics(metrics_over_time)
        logger.info(
            "Simulation finished: %d epochs, %d locks, %d invariant errors",
            sim.num_epochs, final_metrics['num_locks'], len(invariant_errors)
        )
        return SimulationResult(
            config=self.config,
            escrow=self.escrow,
            metrics_over_time=metrics_over_time,
            final_metrics=final_metrics,
            invariant_errors=invariant_errors,
            rejections=dict(rejections),
        )

    def _perform(self, action: str) -> bool:
        """Attempt one random action; returns False when there is nothing to act on."""
        escrow = self.escrow
        now = self.clock.now()
        epoch_length = self.config.escrow.epoch_length_seconds
        max_epochs = self.config.escrow.max_term_epochs

        if action == 'create':
            owner = self.owners[np.random.randint(len(self.owners))]
            low, high = self.config.simulation.principal_range
            total = int(np.random.randint(low, high + 1))
            split = int(np.random.randint(0, total + 1))
            min_epochs = self.config.escrow.min_lock_epochs + 1
            epochs = int(np.random.randint(min_epochs, max(min_epochs + 1, max_epochs)))
            expiry = escrow.epochs.next_epoch_start(now) + epochs * epoch_length
            escrow.create_lock(owner, split, total - split, expiry)
            return True

        lock = self._pick_lock(action)
        if lock is None:
            return False

        if action == 'increase_amount':
            low, high = self.config.simulation.principal_range
            escrow.increase_amount(lock.id, lock.owner, int(np.random.randint(low, high + 1)), 0)
        elif action == 'increase_duration':
            extra = int(np.random.randint(1, 9)) * epoch_length
            escrow.increase_duration(lock.id, lock.owner, lock.expiry + extra)
        elif action == 'delegate':
            escrow.delegate(lock.id, lock.owner, self._pick_delegate())
        elif action == 'switch':
            escrow.switch_delegate(lock.id, lock.owner, self._pick_delegate())
        elif action == 'undelegate':
            escrow.undelegate(lock.id, lock.owner)
        elif action == 'unlock':
            escrow.unlock(lock.id, lock.owner)
        return True

    def _pick_lock(self, action: str):
        now = self.clock.now()
        if action == 'unlock':
            candidates = [l for l in self.escrow.ledger if not l.is_unlocked and l.expiry <= now]
        else:
            candidates = [l for l in self.escrow.ledger if not l.is_unlocked and l.expiry > now]
        if not candidates:
            return None
        return candidates[np.random.randint(len(candidates))]

    def _pick_delegate(self) -> Optional[str]:
        if not self.delegates:
            return None
        return self.delegates[np.random.randint(len(self.delegates))]

    def _compute_metrics(self, epoch: int, applied: int, rejected: int) -> Dict[str, Any]:
        escrow = self.escrow
        now = self.clock.now()
        states = Counter()
        locked_a = 0
        locked_b = 0
        for lock in escrow.ledger:
            if lock.is_unlocked:
                continue
            locked_a += lock.amount_a
            locked_b += lock.amount_b
            states[delegation_state(lock, now)] += 1

        return {
            'epoch': epoch,
            't': now,
            'total_supply': escrow.total_supply(),
            'supply_at_epoch_start': escrow.total_supply_at_epoch(epoch),
            'locked_a': locked_a,
            'locked_b': locked_b,
            'open_locks': sum(states.values()),
            'undelegated_locks': states[DelegationState.UNDELEGATED],
            'pending_locks': states[DelegationState.PENDING],
            'active_locks': states[DelegationState.ACTIVE],
            'actions_applied': applied,
            'actions_rejected': rejected,
        }

    def _compute_final_metrics(self, metrics_over_time: List[Dict[str, Any]]) -> Dict[str, Any]:
        escrow = self.escrow
        supplies = [m['total_supply'] for m in metrics_over_time]
        return {
            'num_locks': len(escrow.ledger),
            'num_unlocked': sum(1 for l in escrow.ledger if l.is_unlocked),
            'final_total_supply': escrow.total_supply(),
            'peak_total_supply': max(supplies) if supplies else 0,
            'mean_total_supply': float(np.mean(supplies)) if supplies else 0.0,
            'final_locked_a': metrics_over_time[-1]['locked_a'] if metrics_over_time else 0,
            'final_locked_b': metrics_over_time[-1]['locked_b'] if metrics_over_time else 0,
            'num_events': len(escrow.events),
            'num_snapshots': len(escrow.store.supply_snapshots),
        }
