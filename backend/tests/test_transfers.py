"""
Inter-department transfer tests.

Verifies:
- sharing rules (item must be granted to the destination with can_transfer)
- consumable stock moves conserve quantity
- non-consumables change owner and remember the source
- source-department scoping for approval
"""

from datetime import timedelta

import pytest

from conftest import NOW
from labinventory.extensions import db
from labinventory.models import Item, ItemDepartmentAccess, TransferRecord
from labinventory.services import inventory_service, transfer_service
from labinventory.services.errors import (
    AccessDeniedError,
    ConflictError,
    ForbiddenError,
    InsufficientStockError,
    InvalidStateError,
    ValidationError,
)


@pytest.fixture
def resistors(make_item, robotics, electronics, chemistry, admin):
    item = make_item(
        robotics, electronics, name="Resistor 220R", is_consumable=True, current_stock=20, min_stock_level=5
    )
    inventory_service.grant_department_access(admin.id, item.id, chemistry.id)
    return item


@pytest.fixture
def shared_arduino(arduino, chemistry, admin):
    inventory_service.grant_department_access(admin.id, arduino.id, chemistry.id)
    return arduino


def _approved_transfer(requester, approver, item, to_department, quantity=None):
    transfer = transfer_service.request_transfer(
        requester.id, item.id, to_department.id, "Semester lab", quantity, now=NOW
    )
    return transfer_service.approve_transfer(approver.id, transfer.id, now=NOW + timedelta(hours=1))


# =============================================================================
# CONSUMABLES
# =============================================================================


class TestConsumableTransfer:
    def test_insufficient_then_complete(self, resistors, incharge, other_incharge, chemistry):
        """Stock 20: 25 is refused; 5 moves to a new CHEM stock line."""
        with pytest.raises(InsufficientStockError) as exc:
            transfer_service.request_transfer(other_incharge.id, resistors.id, chemistry.id, "Lab", 25, now=NOW)
        assert exc.value.message == "Insufficient stock. Available: 20"

        transfer = _approved_transfer(other_incharge, incharge, resistors, chemistry, quantity=5)
        record = transfer_service.complete_transfer(incharge.id, transfer.id, "Handed over", now=NOW)

        source = db.session.get(Item, resistors.id)
        destination = db.session.get(Item, record.destination_item_id)
        assert source.current_stock == 15
        assert destination.department_id == chemistry.id
        assert destination.current_stock == 5
        assert destination.manual_id == "CHEM-001"
        assert destination.is_consumable is True
        assert destination.source_department_id == resistors.department_id
        assert transfer.status == "COMPLETED"
        assert record.quantity == 5
        assert record.notes == "Handed over"

    def test_existing_destination_line_is_topped_up(
        self, resistors, incharge, other_incharge, chemistry, make_item, electronics
    ):
        line = make_item(chemistry, electronics, name="Resistor 220R", is_consumable=True, current_stock=3)
        before = resistors.current_stock + line.current_stock

        transfer = _approved_transfer(other_incharge, incharge, resistors, chemistry, quantity=7)
        record = transfer_service.complete_transfer(other_incharge.id, transfer.id, now=NOW)

        assert record.destination_item_id == line.id
        source = db.session.get(Item, resistors.id)
        dest = db.session.get(Item, line.id)
        assert source.current_stock == 13
        assert dest.current_stock == 10
        assert source.current_stock + dest.current_stock == before

    def test_stock_floored_at_zero(self, resistors, incharge, other_incharge, chemistry):
        transfer = _approved_transfer(other_incharge, incharge, resistors, chemistry, quantity=20)
        # Stock consumed elsewhere between approval and completion
        item = db.session.get(Item, resistors.id)
        item.current_stock = 12
        db.session.commit()

        record = transfer_service.complete_transfer(incharge.id, transfer.id, now=NOW)

        assert db.session.get(Item, resistors.id).current_stock == 0
        assert db.session.get(Item, record.destination_item_id).current_stock == 20

    @pytest.mark.parametrize("quantity", [None, 0, -3])
    def test_quantity_required(self, resistors, other_incharge, chemistry, quantity):
        with pytest.raises(ValidationError):
            transfer_service.request_transfer(other_incharge.id, resistors.id, chemistry.id, "Lab", quantity, now=NOW)


# =============================================================================
# NON-CONSUMABLES
# =============================================================================


class TestItemTransfer:
    def test_item_changes_owner(self, shared_arduino, incharge, other_incharge, robotics, chemistry):
        transfer = _approved_transfer(other_incharge, incharge, shared_arduino, chemistry)
        assert transfer.quantity == 1

        record = transfer_service.complete_transfer(incharge.id, transfer.id, now=NOW)

        item = db.session.get(Item, shared_arduino.id)
        assert item.department_id == chemistry.id
        assert item.source_department_id == robotics.id
        assert item.status == "AVAILABLE"
        assert item.manual_id == "ROBO-001"
        assert record.destination_item_id == item.id

    def test_issued_item_cannot_be_moved(self, shared_arduino, incharge, other_incharge, chemistry):
        transfer = _approved_transfer(other_incharge, incharge, shared_arduino, chemistry)
        item = db.session.get(Item, shared_arduino.id)
        item.status = "ISSUED"
        db.session.commit()

        with pytest.raises(InvalidStateError):
            transfer_service.complete_transfer(incharge.id, transfer.id, now=NOW)
        assert db.session.get(Item, shared_arduino.id).department_id == shared_arduino.department_id
        assert db.session.query(TransferRecord).count() == 0

    def test_second_approved_transfer_goes_stale(
        self, shared_arduino, incharge, other_incharge, robotics, chemistry, make_user, make_department, admin
    ):
        """Two departments approved for the same item: once it moves, the other request cannot complete."""
        elec_incharge = make_user("INCHARGE", name="Electronics Incharge")
        elec = make_department("ELEC", incharge=elec_incharge, name="Electronics Lab")
        inventory_service.grant_department_access(admin.id, shared_arduino.id, elec.id)

        to_chem = _approved_transfer(other_incharge, incharge, shared_arduino, chemistry)
        to_elec = _approved_transfer(elec_incharge, incharge, shared_arduino, elec)
        transfer_service.complete_transfer(incharge.id, to_chem.id, now=NOW)

        with pytest.raises(InvalidStateError) as exc:
            transfer_service.complete_transfer(elec_incharge.id, to_elec.id, now=NOW)
        assert exc.value.message == "Item is no longer held by the source department"

        item = db.session.get(Item, shared_arduino.id)
        assert item.department_id == chemistry.id
        assert item.source_department_id == robotics.id
        assert db.session.query(TransferRecord).count() == 1


# =============================================================================
# ACCESS AND STATE RULES
# =============================================================================


class TestTransferRules:
    def test_item_not_shared(self, arduino, other_incharge, chemistry):
        with pytest.raises(AccessDeniedError) as exc:
            transfer_service.request_transfer(other_incharge.id, arduino.id, chemistry.id, "Lab", now=NOW)
        assert exc.value.message == "This item is not available for transfer to your department"

    def test_sharing_without_transfer_right(self, arduino, other_incharge, chemistry, admin):
        inventory_service.grant_department_access(admin.id, arduino.id, chemistry.id, can_transfer=False)
        with pytest.raises(AccessDeniedError) as exc:
            transfer_service.request_transfer(other_incharge.id, arduino.id, chemistry.id, "Lab", now=NOW)
        assert exc.value.message == "Transfer is not allowed for this item"

    def test_same_department(self, arduino, robotics, incharge):
        # Grants to the owning department are refused by the inventory service, so seed one directly
        db.session.add(ItemDepartmentAccess(item_id=arduino.id, department_id=robotics.id, can_transfer=True))
        db.session.commit()
        with pytest.raises(ValidationError) as exc:
            transfer_service.request_transfer(incharge.id, arduino.id, robotics.id, "Lab", now=NOW)
        assert exc.value.message == "Cannot request transfer from same department"

    def test_requester_must_manage_destination(self, shared_arduino, incharge, chemistry):
        with pytest.raises(ForbiddenError):
            transfer_service.request_transfer(incharge.id, shared_arduino.id, chemistry.id, "Lab", now=NOW)

    def test_only_source_department_approves(self, shared_arduino, other_incharge, chemistry):
        transfer = transfer_service.request_transfer(
            other_incharge.id, shared_arduino.id, chemistry.id, "Lab", now=NOW
        )
        with pytest.raises(ForbiddenError):
            transfer_service.approve_transfer(other_incharge.id, transfer.id, now=NOW)

    def test_procurement_may_approve(self, shared_arduino, other_incharge, chemistry, make_user):
        procurement = make_user("PROCUREMENT")
        transfer = transfer_service.request_transfer(
            other_incharge.id, shared_arduino.id, chemistry.id, "Lab", now=NOW
        )
        approved = transfer_service.approve_transfer(procurement.id, transfer.id, now=NOW)
        assert approved.status == "APPROVED"
        assert approved.approved_by_id == procurement.id

    def test_reject_needs_reason(self, shared_arduino, incharge, other_incharge, chemistry):
        transfer = transfer_service.request_transfer(
            other_incharge.id, shared_arduino.id, chemistry.id, "Lab", now=NOW
        )
        with pytest.raises(ValidationError):
            transfer_service.reject_transfer(incharge.id, transfer.id, "", now=NOW)
        rejected = transfer_service.reject_transfer(incharge.id, transfer.id, "Needed for exams", now=NOW)
        assert rejected.status == "REJECTED"
        assert rejected.rejection_reason == "Needed for exams"

    def test_pending_cannot_complete(self, shared_arduino, incharge, other_incharge, chemistry):
        transfer = transfer_service.request_transfer(
            other_incharge.id, shared_arduino.id, chemistry.id, "Lab", now=NOW
        )
        with pytest.raises(InvalidStateError):
            transfer_service.complete_transfer(incharge.id, transfer.id, now=NOW)

    def test_complete_twice(self, resistors, incharge, other_incharge, chemistry):
        transfer = _approved_transfer(other_incharge, incharge, resistors, chemistry, quantity=2)
        transfer_service.complete_transfer(incharge.id, transfer.id, now=NOW)
        with pytest.raises(InvalidStateError):
            transfer_service.complete_transfer(incharge.id, transfer.id, now=NOW)
        assert db.session.get(Item, resistors.id).current_stock == 18

    def test_rival_completion_rolls_back_stock_move(self, resistors, incharge, other_incharge, robotics, chemistry):
        transfer = _approved_transfer(other_incharge, incharge, resistors, chemistry, quantity=5)
        # A rival completer's record landed while this request still reads APPROVED
        db.session.add(TransferRecord(
            request_id=transfer.id,
            item_id=resistors.id,
            from_department_id=robotics.id,
            to_department_id=chemistry.id,
            transferred_by_id=other_incharge.id,
            quantity=5,
            transfer_date=NOW,
        ))
        db.session.commit()

        with pytest.raises(ConflictError) as exc:
            transfer_service.complete_transfer(incharge.id, transfer.id, now=NOW)
        assert exc.value.message == "This transfer has already been completed"

        assert db.session.get(Item, resistors.id).current_stock == 20
        assert db.session.query(Item).filter_by(department_id=chemistry.id).count() == 0
        assert db.session.query(TransferRecord).count() == 1

    def test_listing_by_direction(self, shared_arduino, incharge, other_incharge, chemistry):
        transfer = transfer_service.request_transfer(
            other_incharge.id, shared_arduino.id, chemistry.id, "Lab", now=NOW
        )
        assert [t.id for t in transfer_service.list_transfer_requests(other_incharge.id, "incoming")] == [transfer.id]
        assert transfer_service.list_transfer_requests(other_incharge.id, "outgoing") == []
        assert [t.id for t in transfer_service.list_transfer_requests(incharge.id, "outgoing")] == [transfer.id]
        assert transfer_service.list_transfer_requests(incharge.id, status="COMPLETED") == []

        with pytest.raises(ValidationError):
            transfer_service.list_transfer_requests(incharge.id, "sideways")
