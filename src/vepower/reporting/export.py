"""Export functionality for CSV and JSON."""

import json
from typing import Any, Dict

import pandas as pd

from ..engine.delegation import delegation_state
from ..engine.escrow import VotingEscrow
from ..simulation.runner import SimulationResult


def metrics_frame(result: SimulationResult) -> pd.DataFrame:
    """Per-epoch simulation metrics as a DataFrame."""
    df = pd.DataFrame(result.metrics_over_time)
    if not df.empty:
        df['t_weeks'] = df['t'] / (7 * 24 * 60 * 60)
    return df


def supply_history_frame(escrow: VotingEscrow) -> pd.DataFrame:
    """Memoized per-epoch total supply snapshots."""
    rows = [
        {
            'epoch': epoch,
            'epoch_start': escrow.epochs.epoch_start(epoch),
            'total_supply': value,
        }
        for epoch, value in sorted(escrow.store.supply_snapshots.items())
    ]
    return pd.DataFrame(rows, columns=['epoch', 'epoch_start', 'total_supply'])


def locks_frame(escrow: VotingEscrow) -> pd.DataFrame:
    """One row per lock with its current delegation status and power."""
    now = escrow.now()
    rows = []
    for lock in escrow.ledger:
        rows.append({
            'lock_id': lock.id,
            'owner': lock.owner,
            'delegate': lock.delegate,
            'credited_to': lock.current_holder(now),
            'state': delegation_state(lock, now).value,
            'amount_a': lock.amount_a,
            'amount_b': lock.amount_b,
            'expiry': lock.expiry,
            'is_unlocked': lock.is_unlocked,
            'voting_power': lock.value_at(now),
            'checkpoints': len(lock.checkpoints),
            'delegations': lock.action_counts['delegate'],
            'switches': lock.action_counts['switch'],
            'undelegations': lock.action_counts['undelegate'],
        })
    return pd.DataFrame(rows)


def accounts_frame(escrow: VotingEscrow) -> pd.DataFrame:
    """Aggregate ledgers with their voting power at the escrow's current time."""
    now = escrow.now()
    rows = []
    for account in escrow.store.all_accounts():
        rows.append({
            'role': account.role.value,
            'key': '/'.join(account.key),
            'last_updated': account.last_updated,
            'voting_power': escrow.sync_engine.value_at(account, now),
            'pending_epoch': account.pending.epoch if account.pending else None,
            'scheduled_expiries': len(account.slope_adjustments),
        })
    return pd.DataFrame(rows)


def export_csv(result: SimulationResult, filepath: str):
    """Export per-epoch simulation metrics to CSV."""
    metrics_frame(result).to_csv(filepath, index=False)


def export_json(result: SimulationResult, filepath: str):
    """Export simulation results to JSON."""
    escrow = result.escrow
    export_data: Dict[str, Any] = {
        'config': result.config.to_dict(),
        'config_hash': result.config.compute_hash(),
        'metrics_over_time': result.metrics_over_time,
        'final_metrics': result.final_metrics,
        'invariant_errors': result.invariant_errors,
        'rejections': result.rejections,
        'supply_history': supply_history_frame(escrow).to_dict(orient='records'),
    }

    with open(filepath, 'w') as f:
        json.dump(export_data, f, indent=2, default=str)
