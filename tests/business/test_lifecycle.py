"""ReservationLifecycle tests.

Covers the consistency rules between reservations, customer records and
the staff incentive ledger:
- create / update / delete keep the ledger equal to the reservation counts
- personal details are merged into the customer record, never cleared
- ledger failures never roll back the reservation write
"""
import threading

import pytest
from sqlalchemy.exc import SQLAlchemyError

from common.errors import InvalidInput, NotFound


def ledger(temp_db):
    return {
        (e["staff"], e["date"]): (e["count"], e["amount"])
        for e in temp_db.get_incentive_list()
    }


# ============================================================
# Create
# ============================================================
class TestCreate:

    def test_create_returns_view_with_customer(self, lifecycle, sample_reservation):
        """测试创建预约返回含顾客信息的视图。"""
        created = lifecycle.create(sample_reservation, created_by="manager")
        assert created["id"]
        assert created["customerId"].startswith("C")
        assert created["parentName"] == "山田花子"
        assert created["customer"]["childName"] == "山田太郎"
        assert created["createdBy"] == "manager"
        assert created["warnings"] == []

    def test_defaults_applied(self, lifecycle, sample_reservation):
        """测试创建时填充状态缺省值。"""
        created = lifecycle.create(sample_reservation)
        assert created["paymentStatus"] == "unpaid"
        assert created["reservationStatus"] == "standby"
        assert created["deliveryStatus"] == "pending"
        assert created["moldCount"] == 1

    def test_create_increments_ledger(self, lifecycle, temp_db, sample_reservation):
        """测试创建预约使台账件数加一。"""
        lifecycle.create(sample_reservation)
        assert ledger(temp_db) == {("佐藤", "2025-10-27"): (1, 1000)}

    def test_two_reservations_same_key(self, lifecycle, temp_db, sample_reservation):
        """测试同一员工同一天的两件预约。"""
        lifecycle.create(sample_reservation)
        lifecycle.create(dict(sample_reservation, moldCount=3))
        assert ledger(temp_db) == {("佐藤", "2025-10-27"): (2, 2000)}

    def test_without_staff_no_ledger_effect(self, lifecycle, temp_db, sample_reservation):
        """测试未分配员工的预约不影响台账。"""
        data = dict(sample_reservation)
        del data["staffInCharge"]
        lifecycle.create(data)
        assert ledger(temp_db) == {}

    def test_missing_date_rejected(self, lifecycle, temp_db, sample_reservation):
        """测试缺少日期时拒绝创建。"""
        data = dict(sample_reservation)
        del data["date"]
        with pytest.raises(InvalidInput):
            lifecycle.create(data)
        assert temp_db.reservations.list_reservations() == []

    def test_missing_names_rejected(self, lifecycle):
        """测试缺少家长和宝宝姓名时拒绝创建。"""
        with pytest.raises(InvalidInput):
            lifecycle.create({"date": "2025-10-27", "staffInCharge": "佐藤"})

    def test_existing_customer_supplies_name(self, lifecycle, temp_db):
        """测试引用已有姓名的顾客时可省略姓名。"""
        temp_db.customers.upsert("C1", {"parentName": "山田花子"})
        created = lifecycle.create({"date": "2025-10-27", "customerId": "C1"})
        assert created["customerId"] == "C1"
        assert created["parentName"] == "山田花子"

    @pytest.mark.parametrize("field, value", [
        ("date", "2025/10/27"),
        ("moldCount", 0),
        ("moldCount", "2"),
        ("duration", -30),
        ("paymentStatus", "refunded"),
        ("deliveryMethod", "drone"),
        ("fontStyle", "comic"),
        ("age", -1),
    ])
    def test_invalid_fields_rejected(self, lifecycle, temp_db,
                                     sample_reservation, field, value):
        """测试非法字段值被拒绝且不影响台账。"""
        with pytest.raises(InvalidInput):
            lifecycle.create(dict(sample_reservation, **{field: value}))
        assert ledger(temp_db) == {}

    def test_create_merges_into_existing_customer(self, lifecycle, temp_db):
        """测试创建时个人信息合并到已有顾客档案。"""
        temp_db.customers.upsert("C1", {
            "parentName": "山田花子", "phoneNumber": "090-0000-0000",
        })
        lifecycle.create({
            "date": "2025-10-27", "customerId": "C1", "address": "東京都",
        })
        customer = temp_db.customers.get("C1")
        assert customer.parent_name == "山田花子"
        assert customer.phone_number == "090-0000-0000"
        assert customer.address == "東京都"

    def test_personal_fields_not_stored_on_reservation(self, lifecycle, temp_db,
                                                       sample_reservation):
        """测试个人信息不写入预约记录。"""
        created = lifecycle.create(sample_reservation)
        stored = temp_db.reservations.get(created["id"])
        assert stored.has_legacy_fields() is False

    def test_create_waits_for_key_lock(self, lifecycle, temp_db, sample_reservation):
        """测试台账键被持有时，创建在提交前等待。"""
        finished = threading.Event()

        def create():
            lifecycle.create(sample_reservation)
            finished.set()

        with temp_db.incentives.locked(("佐藤", "2025-10-27")):
            worker = threading.Thread(target=create)
            worker.start()
            assert not finished.wait(0.2)
            assert temp_db.reservations.list_reservations() == []

        worker.join(timeout=5)
        assert finished.is_set()
        assert ledger(temp_db) == {("佐藤", "2025-10-27"): (1, 1000)}


# ============================================================
# Update
# ============================================================
class TestUpdate:

    def test_staff_change_moves_ledger(self, lifecycle, temp_db, sample_reservation):
        """测试更换员工时台账件数随之移动。"""
        created = lifecycle.create(sample_reservation)
        lifecycle.update(created["id"], {"staffInCharge": "鈴木"})
        assert ledger(temp_db) == {("鈴木", "2025-10-27"): (1, 1000)}

    def test_date_change_moves_ledger(self, lifecycle, temp_db, sample_reservation):
        """测试更改日期时台账件数随之移动。"""
        created = lifecycle.create(sample_reservation)
        lifecycle.create(sample_reservation)
        lifecycle.update(created["id"], {"date": "2025-10-28"})
        assert ledger(temp_db) == {
            ("佐藤", "2025-10-27"): (1, 1000),
            ("佐藤", "2025-10-28"): (1, 1000),
        }

    def test_unrelated_change_leaves_ledger(self, lifecycle, temp_db, sample_reservation):
        """测试无关字段的修改不影响台账。"""
        created = lifecycle.create(sample_reservation)
        updated = lifecycle.update(created["id"], {"note": "刻印あり", "moldCount": 2})
        assert updated["note"] == "刻印あり"
        assert updated["moldCount"] == 2
        assert updated["warnings"] == []
        assert ledger(temp_db) == {("佐藤", "2025-10-27"): (1, 1000)}

    def test_absent_fields_preserved(self, lifecycle, sample_reservation):
        """测试缺失或为 None 的字段保留原值。"""
        created = lifecycle.create(dict(sample_reservation, note="メモ"))
        updated = lifecycle.update(created["id"], {"timeSlot": "11:00", "note": None})
        assert updated["timeSlot"] == "11:00"
        assert updated["note"] == "メモ"
        assert updated["location"] == "東京本店"

    def test_personal_fields_merged_into_customer(self, lifecycle, temp_db,
                                                  sample_reservation):
        """测试更新中的个人信息合并到顾客档案。"""
        created = lifecycle.create(sample_reservation)
        lifecycle.update(created["id"], {"phoneNumber": "080-9999-9999"})
        customer = temp_db.customers.get(created["customerId"])
        assert customer.phone_number == "080-9999-9999"
        assert customer.parent_name == "山田花子"

    def test_empty_update_only_touches_updated_at(self, lifecycle, temp_db,
                                                   sample_reservation):
        """测试空更新只修改 updated_at。"""
        created = lifecycle.create(sample_reservation)
        customer_before = temp_db.customers.get(created["customerId"]).to_dict()

        updated = lifecycle.update(created["id"], {})

        assert updated["updatedAt"] is not None
        for key in ("updatedAt", "warnings"):
            created.pop(key)
            updated.pop(key)
        assert updated == created
        assert temp_db.customers.get(created["customerId"]).to_dict() == customer_before
        assert ledger(temp_db) == {("佐藤", "2025-10-27"): (1, 1000)}

    def test_empty_update_on_legacy_row_keeps_customer_unset(self, lifecycle, temp_db):
        """测试对没有顾客ID的旧数据做空更新时不分配顾客ID。"""
        temp_db.reservations.insert({"id": "legacy-1", "date": "2025-10-27",
                                     "staff_in_charge": "佐藤"})
        before = lifecycle.get("legacy-1")

        updated = lifecycle.update("legacy-1", {})

        assert updated["customerId"] == ""
        assert updated["customer"] is None
        assert not temp_db.reservations.get("legacy-1").customer_id
        assert temp_db.customers.list_customers() == []
        for key in ("updatedAt", "warnings"):
            before.pop(key, None)
            updated.pop(key, None)
        assert updated == before

    def test_personal_update_on_legacy_row_assigns_customer(self, lifecycle, temp_db):
        """测试对没有顾客ID的旧数据写入个人信息时分配顾客ID。"""
        temp_db.reservations.insert({"id": "legacy-1", "date": "2025-10-27"})
        updated = lifecycle.update("legacy-1", {"parentName": "山田花子"})
        assert updated["customerId"].startswith("C")
        assert updated["customer"]["parentName"] == "山田花子"
        assert temp_db.reservations.get("legacy-1").customer_id == updated["customerId"]

    def test_update_missing_raises(self, lifecycle):
        """测试更新不存在的预约。"""
        with pytest.raises(NotFound):
            lifecycle.update("missing", {"note": "x"})

    def test_invalid_update_rejected(self, lifecycle, temp_db, sample_reservation):
        """测试非法更新被拒绝且不修改预约。"""
        created = lifecycle.create(sample_reservation)
        with pytest.raises(InvalidInput):
            lifecycle.update(created["id"], {"date": "not-a-date"})
        assert temp_db.reservations.get(created["id"]).date == "2025-10-27"


# ============================================================
# Delete
# ============================================================
class TestDelete:

    def test_delete_decrements_and_removes_entry(self, lifecycle, temp_db,
                                                 sample_reservation):
        """测试删除预约使台账减一并删除归零记录。"""
        created = lifecycle.create(sample_reservation)
        result = lifecycle.delete(created["id"])
        assert result == {"id": created["id"], "warnings": []}
        assert ledger(temp_db) == {}

    def test_delete_keeps_customer(self, lifecycle, temp_db, sample_reservation):
        """测试删除预约保留顾客档案。"""
        created = lifecycle.create(sample_reservation)
        lifecycle.delete(created["id"])
        assert temp_db.customers.get(created["customerId"]) is not None

    def test_delete_missing_raises(self, lifecycle):
        """测试删除不存在的预约。"""
        with pytest.raises(NotFound):
            lifecycle.delete("missing")

    def test_sato_example(self, lifecycle, temp_db, sample_reservation):
        """测试佐藤同日两件预约，删除一件、改派一件。"""
        first = lifecycle.create(sample_reservation)
        second = lifecycle.create(sample_reservation)
        assert ledger(temp_db) == {("佐藤", "2025-10-27"): (2, 2000)}

        lifecycle.delete(first["id"])
        assert ledger(temp_db) == {("佐藤", "2025-10-27"): (1, 1000)}

        lifecycle.update(second["id"], {"staffInCharge": "鈴木"})
        assert ledger(temp_db) == {("鈴木", "2025-10-27"): (1, 1000)}
        assert temp_db.find_incentive_discrepancies() == []


# ============================================================
# Status transitions
# ============================================================
class TestStatusAdvance:

    def test_payment_cycle(self, lifecycle, sample_reservation):
        """测试支付状态循环。"""
        created = lifecycle.create(sample_reservation)
        seen = [
            lifecycle.advance_payment_status(created["id"])["paymentStatus"]
            for _ in range(3)
        ]
        assert seen == ["pending", "paid", "unpaid"]

    def test_delivery_cycle(self, lifecycle, sample_reservation):
        """测试交付状态循环。"""
        created = lifecycle.create(sample_reservation)
        seen = [
            lifecycle.advance_delivery_status(created["id"])["deliveryStatus"]
            for _ in range(3)
        ]
        assert seen == ["shipped", "completed", "pending"]

    def test_confirmation_toggles_without_ledger_change(self, lifecycle, temp_db,
                                                        sample_reservation):
        """测试切换确认状态不影响台账。"""
        created = lifecycle.create(sample_reservation)
        assert lifecycle.advance_reservation_status(created["id"])[
            "reservationStatus"] == "confirmed"
        assert lifecycle.advance_reservation_status(created["id"])[
            "reservationStatus"] == "standby"
        assert ledger(temp_db) == {("佐藤", "2025-10-27"): (1, 1000)}

    def test_advance_missing_raises(self, lifecycle):
        """测试切换不存在预约的状态。"""
        with pytest.raises(NotFound):
            lifecycle.advance_payment_status("missing")


# ============================================================
# Reads
# ============================================================
class TestRead:

    def test_get_missing_raises(self, lifecycle):
        """测试获取不存在的预约。"""
        with pytest.raises(NotFound):
            lifecycle.get("missing")

    def test_dangling_customer_reference(self, lifecycle, temp_db):
        """测试引用不存在的顾客时返回空信息。"""
        temp_db.reservations.insert({"id": "R1", "date": "2025-10-27",
                                     "customer_id": "C404"})
        view = lifecycle.get("R1")
        assert view["customer"] is None
        assert view["parentName"] == ""
        assert view["age"] == 0

    def test_legacy_fields_used_as_fallback(self, lifecycle, temp_db):
        """测试旧版内嵌信息作为回退显示。"""
        temp_db.reservations.insert({"id": "R1", "date": "2025-10-27",
                                     "parent_name": "旧データ"})
        assert lifecycle.get("R1")["parentName"] == "旧データ"

    def test_list_search(self, lifecycle, sample_reservation):
        """测试按关键词和员工查询预约。"""
        lifecycle.create(sample_reservation)
        lifecycle.create(dict(sample_reservation, parentName="鈴木一子",
                              childName="鈴木二郎", staffInCharge="高橋"))
        assert len(lifecycle.list()) == 2
        hits = lifecycle.list(search="鈴木")
        assert [v["parentName"] for v in hits] == ["鈴木一子"]
        assert len(lifecycle.list(staff="佐藤")) == 1


# ============================================================
# Ledger failure handling
# ============================================================
class TestLedgerFailure:

    @pytest.fixture
    def broken_ledger(self, temp_db, monkeypatch):
        calls = []

        def fail(*args, **kwargs):
            calls.append(args)
            raise SQLAlchemyError("ledger unavailable")

        monkeypatch.setattr(temp_db.incentives, "adjust", fail)
        monkeypatch.setattr(temp_db.incentives, "move", fail)
        return calls

    def test_create_succeeds_with_warning(self, lifecycle, temp_db,
                                          sample_reservation, broken_ledger):
        """测试台账失败时创建仍成功并返回警告。"""
        created = lifecycle.create(sample_reservation)
        assert temp_db.reservations.get(created["id"]) is not None
        assert len(broken_ledger) == 2
        [warning] = created["warnings"]
        assert warning["type"] == "ledger_inconsistency"
        assert warning["staff"] == "佐藤"
        assert warning["delta"] == 1

    def test_update_reports_warning(self, lifecycle, temp_db, sample_reservation,
                                    monkeypatch):
        """测试台账移动失败时更新返回警告。"""
        created = lifecycle.create(sample_reservation)

        def fail(*args, **kwargs):
            raise SQLAlchemyError("ledger unavailable")

        monkeypatch.setattr(temp_db.incentives, "move", fail)
        updated = lifecycle.update(created["id"], {"staffInCharge": "鈴木"})
        assert updated["staffInCharge"] == "鈴木"
        assert updated["warnings"][0]["type"] == "ledger_inconsistency"

    def test_rebuild_repairs_after_failure(self, lifecycle, temp_db,
                                           sample_reservation, broken_ledger):
        """测试台账失败后重建可以修复。"""
        lifecycle.create(sample_reservation)
        assert temp_db.find_incentive_discrepancies()
        temp_db.rebuild_incentives()
        assert temp_db.find_incentive_discrepancies() == []

    def test_retry_then_success(self, lifecycle, temp_db, sample_reservation,
                                monkeypatch):
        """测试台账调整重试后成功。"""
        real_adjust = temp_db.incentives.adjust
        attempts = []

        def flaky(*args, **kwargs):
            attempts.append(args)
            if len(attempts) == 1:
                raise SQLAlchemyError("transient")
            return real_adjust(*args, **kwargs)

        monkeypatch.setattr(temp_db.incentives, "adjust", flaky)
        created = lifecycle.create(sample_reservation)
        assert created["warnings"] == []
        assert ledger(temp_db) == {("佐藤", "2025-10-27"): (1, 1000)}
