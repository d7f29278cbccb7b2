"""
Catalogue maintenance: item edits and removal, sharing, departments and categories.
"""

import pytest

from conftest import NOW
from labinventory.extensions import db
from labinventory.models import AuditLog, Category, Department, Item, ItemDepartmentAccess
from labinventory.services import borrow_service, department_service, inventory_service
from labinventory.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def procurement(make_user):
    return make_user("PROCUREMENT")


@pytest.fixture
def consumable(make_item, robotics, electronics):
    return make_item(robotics, electronics, name="Jumper wires", is_consumable=True, current_stock=30, min_stock_level=5)


# =============================================================================
# ITEMS
# =============================================================================


class TestItemEdit:
    def test_incharge_edits_own_item(self, incharge, arduino):
        item = inventory_service.update_item(incharge.id, arduino.id, {"location": "Shelf B", "condition": "fair"})

        assert item.location == "Shelf B"
        assert item.condition == "FAIR"
        assert item.manual_id == "ROBO-001"
        log = db.session.query(AuditLog).filter_by(action="UPDATE", entity_type="Item").one()
        assert log.entity_id == arduino.id

    def test_incharge_of_other_department_forbidden(self, other_incharge, chemistry, arduino):
        with pytest.raises(ForbiddenError):
            inventory_service.update_item(other_incharge.id, arduino.id, {"location": "Elsewhere"})

    def test_borrower_forbidden(self, student, arduino):
        with pytest.raises(ForbiddenError):
            inventory_service.update_item(student.id, arduino.id, {"name": "Mine"})

    @pytest.mark.parametrize("field", ["manual_id", "department_id", "is_consumable"])
    def test_fixed_fields(self, procurement, arduino, field):
        with pytest.raises(ValidationError):
            inventory_service.update_item(procurement.id, arduino.id, {field: 1})

    def test_issued_item_status_is_locked(self, procurement, make_item, robotics, electronics, arduino):
        busy = make_item(robotics, electronics, status="ISSUED")
        with pytest.raises(InvalidStateError):
            inventory_service.update_item(procurement.id, busy.id, {"status": "AVAILABLE"})
        with pytest.raises(ValidationError):
            inventory_service.update_item(procurement.id, arduino.id, {"status": "ISSUED"})

        moved = inventory_service.update_item(procurement.id, arduino.id, {"status": "maintenance"})
        assert moved.status == "MAINTENANCE"

    def test_stock_levels_only_on_consumables(self, procurement, arduino, consumable):
        with pytest.raises(ValidationError):
            inventory_service.update_item(procurement.id, arduino.id, {"current_stock": 4})
        with pytest.raises(ValidationError):
            inventory_service.update_item(procurement.id, consumable.id, {"current_stock": -2})

        item = inventory_service.update_item(procurement.id, consumable.id, {"current_stock": 12})
        assert item.current_stock == 12

    def test_serial_number_must_stay_unique(self, procurement, arduino, make_item, robotics, electronics):
        other = make_item(robotics, electronics)
        other.serial_number = "SN-77"
        db.session.commit()

        with pytest.raises(ConflictError):
            inventory_service.update_item(procurement.id, arduino.id, {"serial_number": "SN-77"})
        assert db.session.get(Item, arduino.id).serial_number is None

    def test_unknown_category(self, procurement, arduino):
        with pytest.raises(NotFoundError):
            inventory_service.update_item(procurement.id, arduino.id, {"category_id": 9999})


class TestItemDelete:
    def test_deleted_number_is_not_reused(self, procurement, robotics, electronics):
        first = inventory_service.create_item(procurement.id, name="Scope", category_id=electronics.id,
                                              department_id=robotics.id)
        second = inventory_service.create_item(procurement.id, name="Multimeter", category_id=electronics.id,
                                               department_id=robotics.id)
        second_id = second.id
        assert (first.manual_id, second.manual_id) == ("ROBO-001", "ROBO-002")

        inventory_service.delete_item(procurement.id, second_id)
        third = inventory_service.create_item(procurement.id, name="Logic analyser", category_id=electronics.id,
                                              department_id=robotics.id)

        assert db.session.get(Item, second_id) is None
        assert third.manual_id == "ROBO-003"
        log = db.session.query(AuditLog).filter_by(action="DELETE", entity_type="Item").one()
        assert log.entity_id == second_id

    def test_issued_item_cannot_be_deleted(self, incharge, make_item, robotics, electronics):
        busy = make_item(robotics, electronics, status="ISSUED")
        with pytest.raises(InvalidStateError) as exc:
            inventory_service.delete_item(incharge.id, busy.id)
        assert exc.value.message == "Cannot delete item that is currently issued"

    def test_borrowing_history_blocks_delete(self, incharge, student, arduino):
        req = borrow_service.submit_request(student.id, arduino.id, "x", 2, now=NOW)
        borrow_service.cancel_request(student.id, req.id)
        with pytest.raises(ConflictError):
            inventory_service.delete_item(incharge.id, arduino.id)
        assert db.session.get(Item, arduino.id) is not None

    def test_sharing_goes_with_the_item(self, admin, arduino, chemistry):
        inventory_service.grant_department_access(admin.id, arduino.id, chemistry.id)
        inventory_service.delete_item(admin.id, arduino.id)
        assert db.session.query(ItemDepartmentAccess).count() == 0

    def test_other_department_incharge_forbidden(self, other_incharge, chemistry, arduino):
        with pytest.raises(ForbiddenError):
            inventory_service.delete_item(other_incharge.id, arduino.id)


class TestDepartmentAccessReplace:
    def test_replaces_existing_grants(self, procurement, admin, arduino, chemistry, make_department):
        physics = make_department("PHY")
        inventory_service.grant_department_access(admin.id, arduino.id, chemistry.id)

        rows = inventory_service.set_department_access(
            procurement.id, arduino.id, [{"department_id": physics.id}, {"department_id": chemistry.id, "can_transfer": False}]
        )

        assert sorted((r.department_id, r.can_transfer) for r in rows) == sorted(
            [(physics.id, True), (chemistry.id, False)]
        )
        assert inventory_service.list_transferable_items(chemistry.id) == []
        assert [i.id for i in inventory_service.list_transferable_items(physics.id)] == [arduino.id]

    def test_empty_list_clears(self, procurement, admin, arduino, chemistry):
        inventory_service.grant_department_access(admin.id, arduino.id, chemistry.id)
        assert inventory_service.set_department_access(procurement.id, arduino.id, []) == []
        assert db.session.query(ItemDepartmentAccess).count() == 0

    def test_rejects_owner_and_bad_payloads(self, procurement, arduino, robotics):
        with pytest.raises(ValidationError):
            inventory_service.set_department_access(procurement.id, arduino.id, [{"department_id": robotics.id}])
        with pytest.raises(ValidationError):
            inventory_service.set_department_access(procurement.id, arduino.id, None)
        with pytest.raises(NotFoundError):
            inventory_service.set_department_access(procurement.id, arduino.id, [{"department_id": 9999}])


# =============================================================================
# DEPARTMENTS
# =============================================================================


class TestDepartmentMaintenance:
    def test_new_code_applies_to_new_items_only(self, admin, procurement, arduino, robotics, electronics):
        department_service.update_department(admin.id, robotics.id, {"code": "rbt", "name": "Robotics & AI Lab"})

        renamed = db.session.get(Department, robotics.id)
        assert (renamed.code, renamed.name) == ("RBT", "Robotics & AI Lab")
        assert db.session.get(Item, arduino.id).manual_id == "ROBO-001"
        item = inventory_service.create_item(procurement.id, name="Servo", category_id=electronics.id,
                                             department_id=robotics.id)
        assert item.manual_id == "RBT-001"

    def test_code_rules(self, admin, robotics, chemistry):
        with pytest.raises(ConflictError):
            department_service.update_department(admin.id, robotics.id, {"code": "CHEM"})
        with pytest.raises(ValidationError):
            department_service.update_department(admin.id, robotics.id, {"code": "ro bo"})
        with pytest.raises(ConflictError):
            department_service.update_department(admin.id, robotics.id, {"name": "chemistry lab"})

    def test_incharge_change(self, admin, robotics, student):
        with pytest.raises(ValidationError):
            department_service.update_department(admin.id, robotics.id, {"incharge_id": student.id})
        cleared = department_service.update_department(admin.id, robotics.id, {"incharge_id": None})
        assert cleared.incharge_id is None

    def test_delete_refused_while_items_remain(self, admin, robotics, arduino):
        with pytest.raises(InvalidStateError) as exc:
            department_service.delete_department(admin.id, robotics.id)
        assert exc.value.message == "Cannot delete department with 1 items. Please reassign or remove items first."

    def test_delete_refused_with_transfer_history(self, admin, make_department, arduino):
        physics = make_department("PHY")
        item = db.session.get(Item, arduino.id)
        item.source_department_id = physics.id
        db.session.commit()
        with pytest.raises(ConflictError):
            department_service.delete_department(admin.id, physics.id)

    def test_delete_empty_department(self, admin, make_department):
        physics = make_department("PHY")
        physics_id = physics.id
        department_service.delete_department(admin.id, physics_id)
        assert db.session.get(Department, physics_id) is None
        assert db.session.query(AuditLog).filter_by(action="DELETE", entity_type="Department").count() == 1

    def test_incharge_cannot_edit_departments(self, incharge, robotics):
        with pytest.raises(ForbiddenError):
            department_service.update_department(incharge.id, robotics.id, {"name": "Mine"})


# =============================================================================
# CATEGORIES
# =============================================================================


class TestCategoryMaintenance:
    def test_incharge_extends_borrow_limit(self, incharge, student, electronics, arduino):
        category = department_service.update_category(incharge.id, electronics.id, {"max_borrow_duration": 14})
        assert category.max_borrow_duration == 14

        req = borrow_service.submit_request(student.id, arduino.id, "Long project", 10, now=NOW)
        assert req.status == "PENDING"

    @pytest.mark.parametrize("patch", [{"max_borrow_duration": 0}, {"max_borrow_duration": 366}, {"name": "ab"}])
    def test_invalid_values(self, admin, electronics, patch):
        with pytest.raises(ValidationError):
            department_service.update_category(admin.id, electronics.id, patch)

    def test_duplicate_name(self, admin, electronics, make_category):
        make_category("Optics")
        with pytest.raises(ConflictError):
            department_service.update_category(admin.id, electronics.id, {"name": "optics"})

    def test_delete_refused_while_items_remain(self, admin, electronics, arduino):
        with pytest.raises(InvalidStateError):
            department_service.delete_category(admin.id, electronics.id)

    def test_delete_empty_category(self, incharge, make_category):
        optics = make_category("Optics")
        optics_id = optics.id
        department_service.delete_category(incharge.id, optics_id)
        assert db.session.get(Category, optics_id) is None

    def test_borrower_forbidden(self, student, electronics):
        with pytest.raises(ForbiddenError):
            department_service.update_category(student.id, electronics.id, {"max_borrow_duration": 30})
