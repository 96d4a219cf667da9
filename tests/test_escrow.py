"""Escrow surface tests: roles, admin lifecycle, custody and change records."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from conftest import PRINCIPAL, small_params
from vepower.engine.collaborators import InMemoryCustody
from vepower.engine.errors import (
    AmountBelowMinimum,
    EscrowError,
    InputValidationError,
    InvalidAmount,
    LockNotFound,
    NotFrozen,
    OperationsHalted,
    TransferFailed,
    Unauthorized,
)
from vepower.engine.escrow import LockRequest, VotingEscrow
from vepower.validation.sanity_checks import SanityChecker, balance_of_locks


class TestAdminLifecycle:

    def test_pause_blocks_mutations_not_queries(self, escrow):
        lock_id = escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        escrow.lifecycle.pause()
        with pytest.raises(OperationsHalted):
            escrow.create_lock("bob", PRINCIPAL, 0, 1000)
        with pytest.raises(OperationsHalted):
            escrow.delegate(lock_id, "alice", "dave")
        with pytest.raises(OperationsHalted):
            escrow.sync_account("alice")
        assert escrow.voting_power("alice") == 100_000

        escrow.lifecycle.unpause()
        escrow.delegate(lock_id, "alice", "dave")

    def test_freeze_is_terminal(self, escrow):
        escrow.lifecycle.freeze()
        with pytest.raises(OperationsHalted):
            escrow.lifecycle.unpause()
        with pytest.raises(OperationsHalted):
            escrow.create_lock("alice", PRINCIPAL, 0, 1000)

    def test_forced_unlock_requires_freeze(self, escrow):
        lock_id = escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        with pytest.raises(NotFrozen):
            escrow.forced_unlock("admin", [lock_id])

    def test_forced_unlock_requires_admin(self, escrow):
        lock_id = escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        escrow.lifecycle.freeze()
        with pytest.raises(Unauthorized):
            escrow.forced_unlock("alice", [lock_id])

    def test_forced_unlock_releases_principal(self, escrow, clock):
        ids = [
            escrow.create_lock("alice", PRINCIPAL, 0, 1000),
            escrow.create_lock("alice", PRINCIPAL, 7, 1000),
            escrow.create_lock("bob", 0, PRINCIPAL, 1000),
        ]
        settled = escrow.create_lock("carol", PRINCIPAL, 0, 400)
        clock.set(400)
        escrow.unlock(settled, "carol")

        escrow.lifecycle.freeze()
        result = escrow.forced_unlock("admin", ids + [settled])
        assert result.count == 3
        assert result.amount_a == 2 * PRINCIPAL
        assert result.amount_b == PRINCIPAL + 7
        assert set(result.lock_ids) == set(ids)
        assert escrow.custody.balance_of("alice") == (2 * PRINCIPAL, 7)
        assert escrow.custody.balance_of("bob") == (0, PRINCIPAL)
        assert escrow.custody.held_a == 0 and escrow.custody.held_b == 0
        assert all(escrow.ledger.get(i).is_unlocked for i in ids)
        assert len(escrow.events.of_kind('unlocked')) == 4

    def test_forced_unlock_pays_duplicates_once(self, escrow):
        """Repeating an id neither double-pays its owner nor drains other locks."""
        a = escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        b = escrow.create_lock("bob", PRINCIPAL, 0, 1000)
        escrow.lifecycle.freeze()
        result = escrow.forced_unlock("admin", [a, a])
        assert result.count == 1
        assert result.lock_ids == [a]
        assert escrow.custody.balance_of("alice") == (PRINCIPAL, 0)
        assert escrow.custody.held_a == PRINCIPAL
        assert not escrow.ledger.get(b).is_unlocked
        assert escrow.total_supply() == 100_000

    def test_early_forced_unlock_removes_power(self, escrow, clock):
        lock_id = escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        clock.set(150)
        escrow.lifecycle.freeze()
        escrow.forced_unlock("admin", [lock_id])

        assert escrow.total_supply() == 0
        assert escrow.voting_power("alice") == 0
        assert escrow.lock_voting_power(lock_id) == 0
        assert escrow.lock_voting_power(lock_id, at=100) == 90_000
        assert escrow.store.owner("alice").slope_adjustments == {}
        assert escrow.store.global_account.slope_adjustments == {}
        assert SanityChecker(escrow.params).check_escrow(escrow) == []

    def test_early_forced_unlock_cancels_pending_delegation(self, escrow, clock):
        lock_id = escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        kept = escrow.create_lock("bob", PRINCIPAL, 0, 1000)
        clock.set(150)
        escrow.delegate(lock_id, "alice", "dave")
        escrow.delegate(kept, "bob", "dave")
        escrow.lifecycle.freeze()
        escrow.forced_unlock("admin", [lock_id])

        assert escrow.voting_power("alice") == 0
        assert escrow.total_supply() == 100 * 850
        assert escrow.store.delegate("dave").slope_adjustments == {1000: 100}
        clock.set(300)
        assert escrow.voting_power("alice") == 0
        assert escrow.voting_power("dave") == 100 * 700
        assert escrow.pair_voting_power("alice", "dave") == 0
        assert escrow.pair_voting_power("bob", "dave") == 100 * 700
        assert SanityChecker(escrow.params).check_escrow(escrow) == []


class TestCreateOnBehalf:

    def test_operator_creates_for_owners(self, escrow):
        ids = escrow.create_locks_for("operator", [
            LockRequest("alice", PRINCIPAL, 0, 1000),
            LockRequest("bob", PRINCIPAL, 0, 500),
        ])
        assert len(ids) == 2
        assert escrow.ledger.get(ids[0]).owner == "alice"
        assert escrow.voting_power("bob") == 100 * 500
        assert escrow.total_supply() == 100 * 1500
        assert escrow.custody.held_a == 2 * PRINCIPAL

    def test_requires_operator_role(self, escrow):
        with pytest.raises(Unauthorized):
            escrow.create_locks_for("alice", [LockRequest("alice", PRINCIPAL, 0, 1000)])

    def test_batch_is_all_or_nothing(self, escrow):
        with pytest.raises(AmountBelowMinimum):
            escrow.create_locks_for("operator", [
                LockRequest("alice", PRINCIPAL, 0, 1000),
                LockRequest("bob", 1, 0, 1000),
            ])
        assert len(escrow.ledger) == 0
        assert escrow.custody.held_a == 0
        assert escrow.total_supply() == 0


class TestCustody:

    def test_failed_transfer_leaves_no_lock(self, clock):
        escrow = VotingEscrow(params=small_params(), clock=clock,
                              custody=InMemoryCustody(enforce_balances=True))
        with pytest.raises(TransferFailed):
            escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        assert len(escrow.ledger) == 0
        assert escrow.store.owner("alice", create=False) is None

    def test_funded_deposit(self, clock):
        custody = InMemoryCustody(enforce_balances=True)
        custody.fund("alice", PRINCIPAL, 0)
        escrow = VotingEscrow(params=small_params(), clock=clock, custody=custody)
        escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        assert custody.balance_of("alice") == (0, 0)
        assert custody.held_a == PRINCIPAL


class TestQueriesAndRecords:

    def test_owned_versus_credited_power(self, escrow, clock):
        first = escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        escrow.delegate(first, "alice", "dave")
        clock.set(100)
        assert escrow.voting_power("alice") == 90_000
        assert escrow.owned_voting_power("alice") == 180_000
        assert escrow.voting_power("dave") == 90_000
        assert escrow.voting_power("dave", exclude_delegated=True) == 0
        assert escrow.total_supply() == 180_000

    def test_change_records(self, escrow):
        lock_id = escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        created = escrow.events.of_kind('lock_created')
        assert len(created) == 1
        assert created[0].lock_id == lock_id
        assert created[0].data['slope'] == 100

        balances = escrow.events.of_kind('balance_updated')
        assert [r.data['role'] for r in balances] == ['owner']
        assert balances[0].data['bias'] == 100_000

        escrow.delegate(lock_id, "alice", "dave")
        changed = escrow.events.of_kind('delegation_changed')[0]
        assert changed.data['previous'] is None
        assert changed.data['delegate'] == "dave"
        assert changed.data['activation'] == 100

    def test_aggregates_match_locks_after_mixed_activity(self, escrow, clock):
        a = escrow.create_lock("alice", PRINCIPAL, 0, 1000)
        b = escrow.create_lock("bob", 2 * PRINCIPAL, 0, 800)
        escrow.delegate(a, "alice", "dave")
        clock.set(250)
        escrow.increase_amount(a, "alice", PRINCIPAL, 0)
        escrow.delegate(b, "bob", "dave")
        clock.set(330)
        escrow.switch_delegate(a, "alice", "erin")
        escrow.increase_duration(b, "bob", 1200)
        clock.set(470)

        checker = SanityChecker(escrow.params)
        assert checker.check_escrow(escrow) == []
        assert escrow.total_supply() == balance_of_locks(escrow).value_at(470)
        assert escrow.voting_power("erin") == escrow.lock_voting_power(a)
        assert escrow.voting_power("dave") == escrow.lock_voting_power(b)


class TestErrorFamilies:

    def test_input_errors_are_value_errors(self):
        assert issubclass(InvalidAmount, InputValidationError)
        assert issubclass(InvalidAmount, ValueError)
        assert issubclass(InvalidAmount, EscrowError)

    def test_unknown_lock_is_key_error(self, escrow):
        with pytest.raises(KeyError):
            escrow.lock_voting_power("missing")
        with pytest.raises(LockNotFound):
            escrow.unlock("missing", "alice")
