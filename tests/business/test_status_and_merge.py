"""Status cycle, partial-merge and field validation tests."""
import re
from types import SimpleNamespace

import pytest

from common.errors import InvalidInput
from common.fields import (
    CUSTOMER_FIELDS, RESERVATION_FIELDS, generate_id, merge_partial, normalize,
    validate_customer_fields, validate_personal_fields,
    validate_reservation_fields,
)
from business.status import (
    next_delivery_status, next_payment_status, next_reservation_status,
)


class TestStatusCycles:

    @pytest.mark.parametrize("current, expected", [
        ("paid", "unpaid"), ("unpaid", "pending"), ("pending", "paid"),
        (None, "pending"),
    ])
    def test_payment(self, current, expected):
        """测试支付状态的下一步。"""
        assert next_payment_status(current) == expected

    @pytest.mark.parametrize("current, expected", [
        ("pending", "shipped"), ("shipped", "completed"),
        ("completed", "pending"), (None, "shipped"),
    ])
    def test_delivery(self, current, expected):
        """测试交付状态的下一步。"""
        assert next_delivery_status(current) == expected

    @pytest.mark.parametrize("current, expected", [
        ("standby", "confirmed"), ("confirmed", "standby"), (None, "confirmed"),
    ])
    def test_confirmation(self, current, expected):
        """测试确认状态的切换。"""
        assert next_reservation_status(current) == expected

    def test_unknown_state_rejected(self):
        """测试未知状态被拒绝。"""
        with pytest.raises(InvalidInput):
            next_payment_status("refunded")


class TestNormalize:

    def test_camel_and_snake_accepted(self):
        """测试同时接受 camelCase 与 snake_case 键。"""
        result = normalize(
            {"parentName": "A", "child_name": "B", "customerId": "C1"},
            CUSTOMER_FIELDS,
        )
        assert result == {"parent_name": "A", "child_name": "B", "customer_id": "C1"}

    def test_none_and_unknown_dropped(self):
        """测试丢弃 None 值与未知键。"""
        result = normalize(
            {"staffInCharge": None, "date": "2025-10-27", "foo": 1},
            RESERVATION_FIELDS,
        )
        assert result == {"date": "2025-10-27"}

    def test_falsy_values_kept(self):
        """测试保留空字符串和 0。"""
        result = normalize({"note": "", "duration": 0}, RESERVATION_FIELDS)
        assert result == {"note": "", "duration": 0}


class TestMergePartial:

    def test_only_present_fields_overwrite(self):
        """测试只覆盖提供了的字段。"""
        record = SimpleNamespace(a=1, b=2, c=3)
        changed = merge_partial(record, {"a": 10, "c": None}, ["a", "b", "c"])
        assert changed == ["a"]
        assert (record.a, record.b, record.c) == (10, 2, 3)

    def test_disallowed_fields_ignored(self):
        """测试忽略不允许合并的字段。"""
        record = SimpleNamespace(a=1, secret="x")
        merge_partial(record, {"secret": "y"}, ["a"])
        assert record.secret == "x"

    def test_unchanged_values_not_reported(self):
        """测试值未变化时不报告变更。"""
        record = SimpleNamespace(a=1)
        assert merge_partial(record, {"a": 1}, ["a"]) == []


class TestValidation:

    def test_reservation_fields(self):
        """测试预约字段校验。"""
        validate_reservation_fields({
            "date": "2025-10-27", "mold_count": 2, "duration": 0,
            "delivery_method": "shipping", "font_style": "mincho",
        })
        with pytest.raises(InvalidInput):
            validate_reservation_fields({"date": "2025-13-01"})
        with pytest.raises(InvalidInput):
            validate_reservation_fields({"reservation_status": "none"})

    def test_personal_fields(self):
        """测试年龄与月龄必须为非负整数。"""
        validate_personal_fields({"age": 0, "age_months": 5})
        for bad in ({"age": -1}, {"age_months": 1.5}, {"age": False}):
            with pytest.raises(InvalidInput):
                validate_personal_fields(bad)

    def test_customer_fields(self):
        """测试顾客状态的允许取值。"""
        validate_customer_fields({"reservation_status": "none",
                                  "payment_status": "pending"})
        with pytest.raises(InvalidInput):
            validate_customer_fields({"reservation_status": "bogus"})
        with pytest.raises(InvalidInput):
            validate_customer_fields({"payment_status": "free"})


class TestGenerateId:

    def test_format(self):
        """测试ID格式。"""
        assert re.fullmatch(r"\d{13}-[a-z0-9]{9}", generate_id())
        assert re.fullmatch(r"C\d{13}-[a-z0-9]{9}", generate_id("C"))

    def test_unique(self):
        """测试ID不重复。"""
        assert len({generate_id() for _ in range(200)}) == 200
