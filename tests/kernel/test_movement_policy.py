"""
Tests for the movement policy table and cost blending helpers.
"""

from decimal import Decimal

import pytest

from ledger_kernel.domain.movement import (
    MOVEMENT_POLICIES,
    Direction,
    MovementType,
    TransactionType,
    policy_for,
    unblend_cost,
    weighted_average_cost,
)


class TestPolicyTable:
    def test_every_movement_type_has_policy(self):
        assert set(MOVEMENT_POLICIES) == set(MovementType)

    @pytest.mark.parametrize("movement_type", list(MovementType))
    def test_reversal_flips_sign_and_keeps_on_hand_flag(self, movement_type):
        policy = policy_for(movement_type)
        reversal = policy_for(policy.reversal)

        assert reversal.sign == -policy.sign
        assert reversal.affects_on_hand == policy.affects_on_hand

    def test_in_transit_does_not_touch_on_hand(self):
        assert policy_for("IN_TRANSIT").affects_on_hand is False
        assert policy_for(MovementType.IN_TRANSIT).direction is Direction.IN_TRANSIT

    def test_discard_writes_off_transit(self):
        policy = policy_for(MovementType.DISCARD)
        assert policy.sign == -1
        assert policy.affects_on_hand is False
        assert policy.reversal is MovementType.IN_TRANSIT

    def test_transit_closures_reverse_back_into_transit(self):
        assert policy_for(MovementType.TRANSIT_OUT).reversal is MovementType.IN_TRANSIT
        assert policy_for(MovementType.DISCARD).reversal_txn_type is TransactionType.REVERSAL_IN

    def test_reversal_txn_types(self):
        assert policy_for(MovementType.REGULAR_IN).reversal_txn_type is TransactionType.REVERSAL_OUT
        assert policy_for(MovementType.REGULAR_OUT).reversal_txn_type is TransactionType.REVERSAL_IN

    def test_unknown_movement_type(self):
        with pytest.raises(ValueError):
            policy_for("TELEPORT")


class TestCostBlending:
    def test_weighted_average(self):
        cost = weighted_average_cost(Decimal("10"), Decimal("5"), Decimal("10"), Decimal("7"))
        assert cost == Decimal("6")

    def test_weighted_average_empty_batch(self):
        cost = weighted_average_cost(Decimal("0"), Decimal("0"), Decimal("4"), Decimal("2.5"))
        assert cost == Decimal("2.5")

    def test_unblend_restores_prior_cost(self):
        blended = weighted_average_cost(Decimal("10"), Decimal("5"), Decimal("10"), Decimal("7"))
        assert unblend_cost(Decimal("20"), blended, Decimal("10"), Decimal("7")) == Decimal("5")

    def test_unblend_nothing_left_keeps_cost(self):
        assert unblend_cost(Decimal("5"), Decimal("3"), Decimal("5"), Decimal("3")) == Decimal("3")

    def test_unblend_negative_value_keeps_cost(self):
        assert unblend_cost(Decimal("10"), Decimal("1"), Decimal("5"), Decimal("9")) == Decimal("1")
