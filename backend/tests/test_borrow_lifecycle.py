"""
Borrow lifecycle tests.

Verifies:
- request validation order (eligibility, availability, duration, duplicates)
- approval fixes the due date; rejection needs a reason
- issuing couples the item status to the open record
- returns restore the item according to its condition
- department scoping for incharges
"""

from datetime import timedelta

import pytest

from conftest import NOW
from labinventory.extensions import db
from labinventory.models import IssueRecord, IssueRequest, Item
from labinventory.services import borrow_service
from labinventory.services.errors import (
    AccountNotEligibleError,
    AlreadyIssuedError,
    DuplicateRequestError,
    DurationExceededError,
    ForbiddenError,
    InvalidStateError,
    ItemUnavailableError,
    NotFoundError,
    ValidationError,
)


def _open_records(item_id):
    return (
        db.session.query(IssueRecord)
        .filter(IssueRecord.item_id == item_id, IssueRecord.actual_return_date.is_(None))
        .count()
    )


@pytest.fixture
def pending(student, arduino, settings):
    return borrow_service.submit_request(student.id, arduino.id, "Line follower", 5, now=NOW, settings=settings)


@pytest.fixture
def approved(pending, incharge, settings):
    return borrow_service.approve_request(incharge.id, pending.id, "pick up at desk", now=NOW, settings=settings)


@pytest.fixture
def issued(approved, incharge):
    return borrow_service.issue_item(incharge.id, approved.id, now=NOW + timedelta(hours=1))


# =============================================================================
# SUBMIT
# =============================================================================


class TestSubmitRequest:
    def test_duration_limit_then_pending(self, student, arduino, settings):
        """Category allows 7 days: 10 is refused, 5 creates a PENDING request."""
        with pytest.raises(DurationExceededError) as exc:
            borrow_service.submit_request(student.id, arduino.id, "Line follower", 10, now=NOW, settings=settings)
        assert exc.value.message == "Requested duration exceeds maximum allowed (7 days)"

        req = borrow_service.submit_request(student.id, arduino.id, "Line follower", 5, now=NOW, settings=settings)
        assert req.status == "PENDING"
        assert req.request_date == NOW
        assert req.requested_days == 5

    def test_missing_fields(self, student, arduino):
        with pytest.raises(ValidationError):
            borrow_service.submit_request(student.id, arduino.id, "  ", 3, now=NOW)
        with pytest.raises(ValidationError):
            borrow_service.submit_request(student.id, arduino.id, "Project", 0, now=NOW)

    def test_non_integer_days_rejected(self, student, arduino):
        with pytest.raises(ValidationError):
            borrow_service.submit_request(student.id, arduino.id, "Project", "three", now=NOW)

    def test_unknown_item(self, student, arduino):
        with pytest.raises(NotFoundError):
            borrow_service.submit_request(student.id, 999999, "Project", 3, now=NOW)

    def test_second_active_request_is_duplicate(self, pending, student, arduino):
        with pytest.raises(DuplicateRequestError):
            borrow_service.submit_request(student.id, arduino.id, "Again", 2, now=NOW)

    def test_duplicate_while_approved(self, approved, student, arduino):
        with pytest.raises(DuplicateRequestError):
            borrow_service.submit_request(student.id, arduino.id, "Again", 2, now=NOW)

    def test_other_user_may_request_same_item(self, pending, make_user, arduino):
        other = make_user("STUDENT")
        req = borrow_service.submit_request(other.id, arduino.id, "Mine too", 2, now=NOW)
        assert req.status == "PENDING"

    def test_consumable_cannot_be_borrowed(self, student, make_item, robotics, electronics):
        resistor = make_item(robotics, electronics, is_consumable=True, current_stock=100, min_stock_level=10)
        with pytest.raises(ItemUnavailableError) as exc:
            borrow_service.submit_request(student.id, resistor.id, "Circuit", 2, now=NOW)
        assert exc.value.message == "Consumable items cannot be borrowed"

    @pytest.mark.parametrize("status", ["ISSUED", "MAINTENANCE", "PENDING_REPLACEMENT"])
    def test_unavailable_item(self, student, make_item, robotics, electronics, status):
        item = make_item(robotics, electronics, status=status)
        with pytest.raises(ItemUnavailableError):
            borrow_service.submit_request(student.id, item.id, "Project", 2, now=NOW)

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"is_approved": False}, "Your account is pending approval"),
            ({"is_active": False}, "Your account is inactive"),
            ({"is_banned": True}, "You are banned indefinitely pending compensation"),
        ],
    )
    def test_ineligible_accounts(self, make_user, arduino, kwargs, message):
        user = make_user("STUDENT", **kwargs)
        with pytest.raises(AccountNotEligibleError) as exc:
            borrow_service.submit_request(user.id, arduino.id, "Project", 2, now=NOW)
        assert exc.value.message == message

    def test_timed_ban_blocks_with_date(self, make_user, arduino):
        user = make_user("STUDENT", is_banned=True, banned_until=NOW + timedelta(days=30))
        with pytest.raises(AccountNotEligibleError) as exc:
            borrow_service.submit_request(user.id, arduino.id, "Project", 2, now=NOW)
        assert exc.value.message == "You are banned until 01 Apr 2026"

    def test_notifies_department_incharge(self, student, arduino, incharge, outbox):
        borrow_service.submit_request(student.id, arduino.id, "Line follower", 5, now=NOW)
        assert len(outbox) == 1
        assert outbox[0].recipients == [incharge.email]
        assert outbox[0].subject == "New Item Request: Arduino Uno"


# =============================================================================
# APPROVE / REJECT / CANCEL
# =============================================================================


class TestApproval:
    def test_approve_sets_due_date(self, approved):
        """expected_return_date = approval_date + requested_days."""
        assert approved.status == "APPROVED"
        assert approved.approval_date == NOW
        assert approved.expected_return_date == NOW + timedelta(days=5)
        assert approved.remarks == "pick up at desk"

    def test_approve_emails_requester(self, pending, incharge, student, outbox):
        borrow_service.approve_request(incharge.id, pending.id, now=NOW)
        assert [m.recipients for m in outbox] == [[student.email]]
        assert outbox[0].subject == "Request Approved: Arduino Uno"

    def test_approve_twice_is_invalid(self, approved, incharge):
        with pytest.raises(InvalidStateError):
            borrow_service.approve_request(incharge.id, approved.id, now=NOW)

    def test_other_department_incharge_forbidden(self, pending, other_incharge, chemistry):
        with pytest.raises(ForbiddenError):
            borrow_service.approve_request(other_incharge.id, pending.id, now=NOW)
        assert db.session.get(IssueRequest, pending.id).status == "PENDING"

    def test_admin_can_approve_any_department(self, pending, admin):
        req = borrow_service.approve_request(admin.id, pending.id, now=NOW)
        assert req.status == "APPROVED"

    def test_borrower_cannot_approve(self, pending, student):
        with pytest.raises(ForbiddenError):
            borrow_service.approve_request(student.id, pending.id, now=NOW)

    def test_reject_requires_reason(self, pending, incharge):
        with pytest.raises(ValidationError):
            borrow_service.reject_request(incharge.id, pending.id, "   ", now=NOW)

    def test_reject(self, pending, incharge, student, outbox):
        req = borrow_service.reject_request(incharge.id, pending.id, "Reserved for workshop", now=NOW)
        assert req.status == "REJECTED"
        assert req.rejection_reason == "Reserved for workshop"
        assert outbox[0].subject == "Request Rejected: Arduino Uno"

    def test_rejected_request_frees_the_slot(self, pending, incharge, student, arduino):
        borrow_service.reject_request(incharge.id, pending.id, "No", now=NOW)
        again = borrow_service.submit_request(student.id, arduino.id, "Second try", 3, now=NOW)
        assert again.status == "PENDING"

    def test_cancel_own_pending(self, pending, student):
        req = borrow_service.cancel_request(student.id, pending.id)
        assert req.status == "CANCELLED"

    def test_cancel_someone_elses_request(self, pending, make_user):
        other = make_user("STUDENT")
        with pytest.raises(ForbiddenError):
            borrow_service.cancel_request(other.id, pending.id)

    def test_cancel_approved_is_invalid(self, approved, student):
        with pytest.raises(InvalidStateError) as exc:
            borrow_service.cancel_request(student.id, approved.id)
        assert exc.value.message == "Only pending requests can be cancelled"


# =============================================================================
# ISSUE
# =============================================================================


class TestIssue:
    def test_non_returnable_needs_project_then_issue_once(self, approved, incharge, arduino, student):
        with pytest.raises(ValidationError):
            borrow_service.issue_item(incharge.id, approved.id, is_returnable=False, now=NOW)

        record = borrow_service.issue_item(
            incharge.id, approved.id, is_returnable=False, project_name="Demo Bot", now=NOW
        )
        assert record.project_name == "Demo Bot"
        assert record.project_incharge == student.name
        assert record.is_returnable is False
        assert db.session.get(Item, arduino.id).status == "ISSUED"

        with pytest.raises(AlreadyIssuedError):
            borrow_service.issue_item(incharge.id, approved.id, is_returnable=False, project_name="Demo Bot", now=NOW)

    def test_issue_uses_approved_due_date(self, issued, approved):
        assert issued.expected_return_date == NOW + timedelta(days=5)
        assert issued.department_id == approved.item.department_id
        assert issued.reminder_3days_sent is False

    def test_pending_request_cannot_be_issued(self, pending, incharge):
        with pytest.raises(InvalidStateError):
            borrow_service.issue_item(incharge.id, pending.id, now=NOW)

    def test_item_no_longer_available(self, approved, incharge, arduino):
        item = db.session.get(Item, arduino.id)
        item.status = "MAINTENANCE"
        db.session.commit()
        with pytest.raises(ItemUnavailableError):
            borrow_service.issue_item(incharge.id, approved.id, now=NOW)
        assert db.session.query(IssueRecord).count() == 0

    def test_one_open_record_per_item(self, issued, arduino, make_user, incharge):
        """A second approved request for an issued item cannot be issued."""
        other = make_user("STUDENT")
        item = db.session.get(Item, arduino.id)
        item.status = "AVAILABLE"
        db.session.commit()
        req = borrow_service.submit_request(other.id, arduino.id, "Mine", 2, now=NOW)
        borrow_service.approve_request(incharge.id, req.id, now=NOW)

        # Restore the real state: the item is out on loan
        item = db.session.get(Item, arduino.id)
        item.status = "ISSUED"
        db.session.commit()

        with pytest.raises(ItemUnavailableError):
            borrow_service.issue_item(incharge.id, req.id, now=NOW)
        assert _open_records(arduino.id) == 1

    def test_ready_to_issue_lists_only_unissued(self, approved, incharge, other_incharge, chemistry):
        assert [r.id for r in borrow_service.list_ready_to_issue(incharge.id)] == [approved.id]
        assert borrow_service.list_ready_to_issue(other_incharge.id) == []
        borrow_service.issue_item(incharge.id, approved.id, now=NOW)
        assert borrow_service.list_ready_to_issue(incharge.id) == []


class TestIssueRaces:
    """Unique indexes decide when two issuers pass the pre-checks together."""

    def test_open_loan_on_item_wins_over_stale_status(self, issued, arduino, make_user, incharge):
        other = make_user("STUDENT")
        item = db.session.get(Item, arduino.id)
        item.status = "AVAILABLE"
        db.session.commit()
        req = borrow_service.submit_request(other.id, arduino.id, "Mine", 2, now=NOW)
        borrow_service.approve_request(incharge.id, req.id, now=NOW)

        with pytest.raises(ItemUnavailableError):
            borrow_service.issue_item(incharge.id, req.id, now=NOW)
        assert _open_records(arduino.id) == 1
        assert db.session.query(IssueRecord).filter_by(request_id=req.id).count() == 0

    def test_same_request_issued_concurrently(self, approved, incharge, student, arduino, robotics, monkeypatch):
        real_lock = borrow_service.lock_for_update
        raced = []

        def _lock_after_rival_commits(query):
            if query.column_descriptions[0]["entity"] is Item and not raced:
                raced.append(True)
                db.session.add(IssueRecord(
                    request_id=approved.id,
                    item_id=arduino.id,
                    user_id=student.id,
                    department_id=robotics.id,
                    issued_by=incharge.id,
                    issue_date=NOW,
                    expected_return_date=NOW + timedelta(days=5),
                ))
                db.session.commit()
            return real_lock(query)

        monkeypatch.setattr(borrow_service, "lock_for_update", _lock_after_rival_commits)

        with pytest.raises(AlreadyIssuedError):
            borrow_service.issue_item(incharge.id, approved.id, now=NOW)
        assert raced == [True]
        assert db.session.query(IssueRecord).filter_by(request_id=approved.id).count() == 1


# =============================================================================
# RETURN
# =============================================================================


class TestReturn:
    def test_on_time_return_restores_item(self, issued, incharge, arduino, student):
        result = borrow_service.return_item(incharge.id, issued.id, "GOOD", now=NOW + timedelta(days=3))

        assert result.is_late is False
        assert result.days_late == 0
        assert result.ban.banned is False
        assert result.record.returned_to == incharge.id
        item = db.session.get(Item, arduino.id)
        assert item.status == "AVAILABLE"
        assert item.condition == "GOOD"
        assert _open_records(arduino.id) == 0
        assert db.session.get(IssueRequest, issued.request_id).completed_at == NOW + timedelta(days=3)

    def test_status_follows_open_record(self, issued, incharge, arduino):
        assert db.session.get(Item, arduino.id).status == "ISSUED"
        assert _open_records(arduino.id) == 1
        borrow_service.return_item(incharge.id, issued.id, "FAIR", now=NOW + timedelta(days=1))
        assert db.session.get(Item, arduino.id).status != "ISSUED"
        assert _open_records(arduino.id) == 0

    def test_return_twice(self, issued, incharge):
        borrow_service.return_item(incharge.id, issued.id, "GOOD", now=NOW + timedelta(days=1))
        with pytest.raises(InvalidStateError) as exc:
            borrow_service.return_item(incharge.id, issued.id, "GOOD", now=NOW + timedelta(days=1))
        assert exc.value.message == "This item has already been returned"

    @pytest.mark.parametrize("condition", ["DAMAGED", "UNDER_REPAIR"])
    def test_damage_needs_remarks(self, issued, incharge, condition):
        with pytest.raises(ValidationError):
            borrow_service.return_item(incharge.id, issued.id, condition, now=NOW)

    def test_invalid_condition(self, issued, incharge):
        with pytest.raises(ValidationError):
            borrow_service.return_item(incharge.id, issued.id, "BROKEN", now=NOW)

    def test_under_repair_goes_to_maintenance(self, issued, incharge, arduino):
        borrow_service.return_item(
            incharge.id, issued.id, "UNDER_REPAIR", damage_remarks="Loose header", now=NOW + timedelta(days=1)
        )
        assert db.session.get(Item, arduino.id).status == "MAINTENANCE"

    def test_damaged_without_replacement_is_available(self, issued, incharge, arduino):
        borrow_service.return_item(
            incharge.id, issued.id, "DAMAGED", damage_remarks="Scratched", now=NOW + timedelta(days=1)
        )
        item = db.session.get(Item, arduino.id)
        assert item.status == "AVAILABLE"
        assert item.condition == "DAMAGED"

    def test_can_request_again_after_return(self, issued, incharge, student, arduino):
        borrow_service.return_item(incharge.id, issued.id, "GOOD", now=NOW + timedelta(days=2))
        again = borrow_service.submit_request(student.id, arduino.id, "Round two", 3, now=NOW + timedelta(days=2))
        assert again.status == "PENDING"

    def test_other_department_cannot_receive(self, issued, other_incharge, chemistry):
        with pytest.raises(ForbiddenError):
            borrow_service.return_item(other_incharge.id, issued.id, "GOOD", now=NOW)

    def test_open_records_report_overdue(self, issued, incharge):
        rows = borrow_service.list_open_records(incharge.id, now=NOW + timedelta(days=7))
        assert len(rows) == 1
        assert rows[0]["is_overdue"] is True
        assert rows[0]["days_overdue"] == 2
        assert rows[0]["item"]["manual_id"] == "ROBO-001"
