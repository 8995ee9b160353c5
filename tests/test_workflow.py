"""Tests for the upgrade workflow state machine and upgrade pricing."""

from __future__ import annotations

import pytest

from voltvend.errors import CapacityBelowUsage, InvalidStateTransition, ValidationError
from voltvend.ledger.capacity import effective_capacity
from voltvend.ledger.workflow import (
    EVENT_APPLY,
    EVENT_APPROVE,
    EVENT_CANCEL,
    EVENT_REJECT,
    EVENT_SUBMIT_PROOF,
    TRANSITIONS,
    VENDOR_CANCELLED,
    UpgradePolicy,
    apply,
    new_request,
    next_status,
    plan_application,
    plan_approval,
    plan_cancellation,
    plan_payment_proof,
    plan_rejection,
)
from voltvend.models.upgrade_entry import (
    KIND_ADMIN_GRANT,
    STATUS_APPLIED,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_PENDING_VERIFICATION,
    STATUS_REJECTED,
    normalize_status,
)

POLICY = UpgradePolicy()

# Position of each status along the one-way path
_RANK = {
    STATUS_PENDING: 0,
    STATUS_PENDING_VERIFICATION: 1,
    STATUS_APPROVED: 2,
    STATUS_APPLIED: 3,
    STATUS_REJECTED: 3,
}


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class TestUpgradePolicy:
    @pytest.mark.parametrize("units", [500, 1000, 2500, 5000])
    def test_accepts_multiples_within_bounds(self, units: int) -> None:
        POLICY.validate_units(units)

    @pytest.mark.parametrize("units", [0, -500, 499, 501, 750, 5001, 5500])
    def test_rejects_out_of_range_or_uneven(self, units: int) -> None:
        with pytest.raises(ValidationError):
            POLICY.validate_units(units)

    @pytest.mark.parametrize("units", [True, 500.0, "500", None])
    def test_rejects_non_integers(self, units) -> None:
        with pytest.raises(ValidationError):
            POLICY.validate_units(units)

    def test_price_per_block(self) -> None:
        assert POLICY.price(500) == 50_000
        assert POLICY.price(1500) == 150_000
        assert POLICY.price(5000) == 500_000

    def test_custom_policy(self) -> None:
        policy = UpgradePolicy(unit_size=100, min_units=100, max_units=300, unit_price=1_000)
        assert policy.price(300) == 3_000
        with pytest.raises(ValidationError):
            policy.validate_units(400)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestNewRequest:
    def test_creates_pending_entry(self, build_vendor) -> None:
        vendor = build_vendor()
        entry = new_request(vendor, 1000, str(vendor.id), POLICY, reason="Growing estate")

        assert entry.status == STATUS_PENDING
        assert entry.delta == 1000
        assert entry.amount_due == 100_000
        assert entry.vendor_id == vendor.id
        assert entry.reason == "Growing estate"
        assert entry.decided_at is None

    def test_invalid_size_creates_nothing(self, build_vendor) -> None:
        vendor = build_vendor()
        with pytest.raises(ValidationError):
            new_request(vendor, 499, "v", POLICY)
        assert vendor.entries == []

    def test_pending_request_does_not_change_capacity(self, build_vendor) -> None:
        vendor = build_vendor(base_capacity=1000)
        vendor.entries.append(new_request(vendor, 500, "v", POLICY))
        assert effective_capacity(vendor) == 1000


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestTransitions:
    def test_every_allowed_transition_moves_forward(self) -> None:
        for event, moves in TRANSITIONS.items():
            for source, target in moves.items():
                assert _RANK[target] > _RANK[source], (event, source, target)

    def test_terminal_statuses_accept_no_events(self, build_entry) -> None:
        for status in (STATUS_REJECTED, STATUS_APPLIED):
            entry = build_entry(status=status)
            for event in TRANSITIONS:
                with pytest.raises(InvalidStateTransition):
                    next_status(entry, event)

    def test_unknown_event(self, build_entry) -> None:
        with pytest.raises(InvalidStateTransition):
            next_status(build_entry(), "refund")

    def test_admin_entries_cannot_be_decided(self, build_entry) -> None:
        entry = build_entry(status=STATUS_APPROVED, kind=KIND_ADMIN_GRANT)
        for event in (EVENT_SUBMIT_PROOF, EVENT_APPROVE, EVENT_REJECT, EVENT_CANCEL):
            with pytest.raises(InvalidStateTransition):
                next_status(entry, event)
        assert next_status(entry, EVENT_APPLY) == STATUS_APPLIED

    def test_completed_is_an_alias_for_approved(self) -> None:
        assert normalize_status("completed") == STATUS_APPROVED
        assert normalize_status("PENDING") == STATUS_PENDING
        with pytest.raises(ValueError):
            normalize_status("paid")


class TestPlanning:
    def test_full_happy_path(self, build_entry) -> None:
        entry = build_entry(status=STATUS_PENDING)

        apply(entry, plan_payment_proof(entry, "s3://proofs/rcpt-1.pdf", reference="TRX-991"))
        assert entry.status == STATUS_PENDING_VERIFICATION
        assert entry.proof_of_payment == "s3://proofs/rcpt-1.pdf"
        assert entry.payment_reference == "TRX-991"

        apply(entry, plan_approval(entry, "admin-1", notes="Bank transfer confirmed"))
        assert entry.status == STATUS_APPROVED
        assert entry.decided_by == "admin-1"
        assert entry.decided_at is not None
        assert entry.admin_notes == "Bank transfer confirmed"

        apply(entry, plan_application(entry))
        assert entry.status == STATUS_APPLIED
        assert entry.applied_at is not None

    def test_approve_straight_from_pending(self, build_entry) -> None:
        entry = build_entry(status=STATUS_PENDING)
        change = plan_approval(entry, "admin-1")
        assert change.expected_status == STATUS_PENDING
        assert change.new_status == STATUS_APPROVED

    def test_proof_is_required(self, build_entry) -> None:
        entry = build_entry(status=STATUS_PENDING)
        with pytest.raises(ValidationError):
            plan_payment_proof(entry, "   ")

    def test_proof_only_once(self, build_entry) -> None:
        entry = build_entry(status=STATUS_PENDING_VERIFICATION)
        with pytest.raises(InvalidStateTransition):
            plan_payment_proof(entry, "receipt.png")

    def test_double_approval_is_rejected(self, build_entry) -> None:
        entry = build_entry(status=STATUS_APPROVED)
        with pytest.raises(InvalidStateTransition):
            plan_approval(entry, "admin-2")

    def test_rejection_needs_a_reason(self, build_entry) -> None:
        entry = build_entry(status=STATUS_PENDING)
        with pytest.raises(ValidationError):
            plan_rejection(entry, "admin-1", None, effective=1000, used=0)
        with pytest.raises(ValidationError):
            plan_rejection(entry, "admin-1", "  ", effective=1000, used=0)
        assert entry.status == STATUS_PENDING

    def test_rejection_records_reason(self, build_entry) -> None:
        entry = build_entry(status=STATUS_PENDING_VERIFICATION)
        apply(entry, plan_rejection(entry, "admin-1", "Proof unreadable", effective=1000, used=0))
        assert entry.status == STATUS_REJECTED
        assert entry.reason == "Proof unreadable"

    def test_reversing_approval_respects_usage(self, build_entry) -> None:
        entry = build_entry(delta=500, status=STATUS_APPROVED)

        with pytest.raises(CapacityBelowUsage) as exc_info:
            plan_rejection(entry, "admin-1", "Chargeback", effective=1500, used=1200)
        assert exc_info.value.floor == 1200
        assert exc_info.value.max_reducible == 300

        change = plan_rejection(entry, "admin-1", "Chargeback", effective=1500, used=1000)
        assert change.new_status == STATUS_REJECTED

    def test_cancel_undecided(self, build_entry) -> None:
        for status in (STATUS_PENDING, STATUS_PENDING_VERIFICATION):
            entry = build_entry(status=status)
            apply(entry, plan_cancellation(entry, "vendor-1"))
            assert entry.status == STATUS_REJECTED
            assert entry.reason == VENDOR_CANCELLED

    def test_cannot_cancel_after_approval(self, build_entry) -> None:
        with pytest.raises(InvalidStateTransition):
            plan_cancellation(build_entry(status=STATUS_APPROVED), "vendor-1")

    def test_apply_refuses_stale_transition(self, build_entry) -> None:
        entry = build_entry(status=STATUS_PENDING)
        change = plan_approval(entry, "admin-1")
        entry.status = STATUS_REJECTED
        with pytest.raises(InvalidStateTransition):
            apply(entry, change)

    def test_approval_lifts_capacity(self, build_vendor, build_entry) -> None:
        entry = build_entry(delta=500, status=STATUS_PENDING)
        vendor = build_vendor(base_capacity=1000, entries=[entry])
        apply(entry, plan_approval(entry, "admin-1"))
        assert effective_capacity(vendor) == 1500
