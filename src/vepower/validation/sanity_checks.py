"""Sanity checks and invariant validation for escrow configuration and state."""

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..config.schema import Config, EscrowParameters
from ..engine.decay import ZERO, DecayBalance
from ..engine.escrow import VotingEscrow

YEAR_SECONDS = 365 * 24 * 60 * 60


@dataclass
class ValidationWarning:
    """A validation warning with severity and message."""
    severity: str  # "warning" or "error"
    category: str  # e.g., "input", "conservation", "bounds"
    message: str
    details: Optional[str] = None


class SanityChecker:
    """Run sanity checks on escrow parameters and live escrow state."""

    def __init__(self, params: EscrowParameters):
        """Initialize with escrow parameters."""
        self.params = params

    def check_config_inputs(self) -> List[ValidationWarning]:
        """
        Check escrow parameters for implausible values.

        Returns:
            List of validation warnings
        """
        warnings = []
        params = self.params

        if params.max_term_epochs < 10:
            warnings.append(ValidationWarning(
                severity="warning",
                category="bounds",
                message="Maximum term spans fewer than 10 epochs",
                details=f"Max term: {params.max_term_epochs} epochs"
            ))

        if params.max_term_seconds > 10 * YEAR_SECONDS:
            warnings.append(ValidationWarning(
                severity="warning",
                category="bounds",
                message="Maximum term exceeds 10 years",
                details=f"Max term: {params.max_term_seconds / YEAR_SECONDS:.1f} years"
            ))

        if params.min_delegation_epochs < 2:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message="Delegation buffer below 2 epochs",
                details="A delegation booked in the final epochs may never activate before expiry"
            ))

        if params.max_sync_epochs is not None and params.max_sync_epochs < 4:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message="Very small batch sync chunk",
                details=f"max_sync_epochs={params.max_sync_epochs}; stale accounts need many calls"
            ))

        return warnings

    def check_escrow(self, escrow: VotingEscrow) -> List[ValidationWarning]:
        """
        Check that every aggregate agrees with the locks it credits.

        Compares, at the escrow's current time, the global aggregate and each
        owner, delegate and pair aggregate against the sum of lock values.

        Args:
            escrow: Escrow to inspect

        Returns:
            List of validation warnings
        """
        warnings = []
        now = escrow.now()
        epoch_start = escrow.epochs.current_epoch_start(now)

        live_sum = ZERO
        by_owner: Dict[str, int] = defaultdict(int)
        by_delegate: Dict[str, int] = defaultdict(int)
        by_pair: Dict[Tuple[str, str], int] = defaultdict(int)

        for lock in escrow.ledger:
            if lock.is_unlocked or lock.expiry <= epoch_start:
                continue
            live_sum = live_sum + lock.balance
            value = lock.balance.value_at(now)
            holder = lock.current_holder(now)
            if holder == lock.owner:
                by_owner[holder] += value
            else:
                by_delegate[holder] += value
                by_pair[(lock.owner, holder)] += value

        global_balance = escrow.sync_engine.project(escrow.store.global_account, now)
        if global_balance != live_sum:
            warnings.append(ValidationWarning(
                severity="error",
                category="conservation",
                message=f"Global aggregate differs from sum of live locks at t={now}",
                details=f"Global: {global_balance}, Locks: {live_sum}"
            ))

        checks = [
            ("owner", escrow.store.owners, by_owner,
             lambda key: escrow.voting_power(key, now, exclude_delegated=True)),
            ("delegate", escrow.store.delegates, by_delegate,
             lambda key: escrow.delegated_voting_power(key, now)),
            ("pair", escrow.store.pairs, by_pair,
             lambda key: escrow.pair_voting_power(key[0], key[1], now)),
        ]
        for role, table, expected, query in checks:
            for key in set(table) | set(expected):
                actual = query(key)
                if actual != expected.get(key, 0):
                    warnings.append(ValidationWarning(
                        severity="error",
                        category="conservation",
                        message=f"{role} aggregate {key} disagrees with its locks at t={now}",
                        details=f"Aggregate: {actual:,}, Locks: {expected.get(key, 0):,}"
                    ))

        for account in escrow.store.all_accounts():
            if account.history.is_negative or any(v < 0 for v in account.slope_adjustments.values()):
                warnings.append(ValidationWarning(
                    severity="error",
                    category="bounds",
                    message=f"Negative {account.role.value} aggregate {account.key}",
                    details=f"History: {account.history}"
                ))

        return warnings

    def check_metrics(self, metrics: Dict[str, Any]) -> List[ValidationWarning]:
        """
        Check per-epoch simulation metrics for issues.

        Args:
            metrics: Metrics dictionary for one epoch

        Returns:
            List of validation warnings
        """
        warnings = []

        for key, value in metrics.items():
            if isinstance(value, (int, float)) and value < 0:
                warnings.append(ValidationWarning(
                    severity="error",
                    category="bounds",
                    message=f"Negative metric value for {key}",
                    details=f"Value: {value}"
                ))

        attempted = metrics.get('actions_applied', 0) + metrics.get('actions_rejected', 0)
        if attempted >= 10 and metrics.get('actions_rejected', 0) > 0.9 * attempted:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message="More than 90% of simulated actions were rejected",
                details="Action weights may not fit the lock population"
            ))

        return warnings


def validate_simulation_results(
    config: Config,
    escrow: VotingEscrow,
    metrics_over_time: List[Dict[str, Any]]
) -> List[ValidationWarning]:
    """
    Validate complete simulation results.

    Args:
        config: Simulation configuration
        escrow: Escrow at the end of the run
        metrics_over_time: List of metrics dictionaries

    Returns:
        List of all validation warnings
    """
    checker = SanityChecker(config.escrow)
    warnings = []

    warnings.extend(checker.check_config_inputs())
    warnings.extend(checker.check_escrow(escrow))

    if metrics_over_time:
        warnings.extend(checker.check_metrics(metrics_over_time[-1]))

    return warnings


def balance_of_locks(escrow: VotingEscrow, owner: str = None) -> DecayBalance:
    """Component-wise sum of live lock balances (optionally for one owner)."""
    total = ZERO
    epoch_start = escrow.epochs.current_epoch_start(escrow.now())
    for lock in escrow.ledger:
        if lock.is_unlocked or lock.expiry <= epoch_start:
            continue
        if owner is None or lock.owner == owner:
            total = total + lock.balance
    return total
