"""字段映射、部分更新合并原语与取值校验。

顾客档案与预约记录的更新统一采用"字段存在则覆盖，缺失则保留"的语义：
输入中不存在或值为 None 的字段不会覆盖已有值。

外部（JSON）使用 camelCase 键，ORM 模型使用 snake_case 属性，
两种写法在 normalize() 中统一为 snake_case。
"""
import random
import string
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from .errors import InvalidInput

# camelCase -> ORM 属性名
CUSTOMER_FIELDS: Dict[str, str] = {
    "customerId": "customer_id",
    "parentName": "parent_name",
    "childName": "child_name",
    "age": "age",
    "ageMonths": "age_months",
    "phoneNumber": "phone_number",
    "address": "address",
    "lineUrl": "line_url",
    "note": "note",
    "paymentStatus": "payment_status",
    "reservationStatus": "reservation_status",
}

# 预约时随同提交、需写入顾客档案的个人信息字段
PERSONAL_FIELDS: Dict[str, str] = {
    "parentName": "parent_name",
    "childName": "child_name",
    "age": "age",
    "ageMonths": "age_months",
    "phoneNumber": "phone_number",
    "address": "address",
    "lineUrl": "line_url",
}

RESERVATION_FIELDS: Dict[str, str] = {
    "date": "date",
    "timeSlot": "time_slot",
    "duration": "duration",
    "customerId": "customer_id",
    "moldCount": "mold_count",
    "paymentStatus": "payment_status",
    "reservationStatus": "reservation_status",
    "location": "location",
    "staffInCharge": "staff_in_charge",
    "note": "note",
    "deliveryStatus": "delivery_status",
    "deliveryMethod": "delivery_method",
    "shippingAddress": "shipping_address",
    "scheduledDeliveryDate": "scheduled_delivery_date",
    "actualDeliveryDate": "actual_delivery_date",
    "engravingName": "engraving_name",
    "engravingDate": "engraving_date",
    "fontStyle": "font_style",
    "createdBy": "created_by",
}

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_id(prefix: str = "") -> str:
    """生成 ``<毫秒时间戳>-<9位随机串>`` 格式的ID。"""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}{int(time.time() * 1000)}-{suffix}"


def normalize(data: Mapping[str, Any],
              field_map: Mapping[str, str]) -> Dict[str, Any]:
    """将输入字典规范化为 ORM 属性名。

    同时接受 camelCase 与 snake_case 键，未知键被忽略，值为 None 的键视为缺失。

    Args:
        data: 输入字典。
        field_map: camelCase -> snake_case 映射。

    Returns:
        以 snake_case 为键、仅含有效值的字典。
    """
    attrs = set(field_map.values())
    result: Dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        attr = field_map.get(key, key)
        if attr in attrs:
            result[attr] = value
    return result


def merge_partial(record: Any, fields: Mapping[str, Any],
                  allowed: Iterable[str]) -> List[str]:
    """将部分字段合并到记录上。

    只覆盖 ``allowed`` 中且在 ``fields`` 中存在、值不为 None 的属性。

    Returns:
        值发生变化的属性名列表。
    """
    changed = []
    for attr in allowed:
        if attr not in fields or fields[attr] is None:
            continue
        if getattr(record, attr) != fields[attr]:
            setattr(record, attr, fields[attr])
            changed.append(attr)
    return changed


# ================================================================
# 枚举取值
# ================================================================

PAYMENT_CYCLE: Tuple[str, ...] = ("paid", "unpaid", "pending")
DELIVERY_CYCLE: Tuple[str, ...] = ("pending", "shipped", "completed")
RESERVATION_CYCLE: Tuple[str, ...] = ("standby", "confirmed")

CUSTOMER_RESERVATION_STATUSES: Tuple[str, ...] = ("standby", "confirmed", "none")
DELIVERY_METHODS: Tuple[str, ...] = ("studio", "shipping")
FONT_STYLES: Tuple[str, ...] = ("mincho", "gothic", "cursive")

_RESERVATION_ENUMS = {
    "payment_status": PAYMENT_CYCLE,
    "reservation_status": RESERVATION_CYCLE,
    "delivery_status": DELIVERY_CYCLE,
    "delivery_method": DELIVERY_METHODS,
    "font_style": FONT_STYLES,
}

_CUSTOMER_ENUMS = {
    "payment_status": PAYMENT_CYCLE,
    "reservation_status": CUSTOMER_RESERVATION_STATUSES,
}


# ================================================================
# 取值校验（输入均为 normalize() 之后的 snake_case 字典）
# ================================================================

def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_enums(fields: Mapping[str, Any],
                 enums: Mapping[str, Tuple[str, ...]]) -> None:
    for attr, allowed in enums.items():
        if attr in fields and fields[attr] not in allowed:
            raise InvalidInput(f"{attr} の値が不正です: {fields[attr]}")


def validate_reservation_fields(fields: Mapping[str, Any]) -> None:
    """校验预约字段取值。

    Raises:
        InvalidInput: 日期格式、模型数量、枚举值等非法。
    """
    if "date" in fields:
        try:
            datetime.strptime(fields["date"], "%Y-%m-%d")
        except (TypeError, ValueError):
            raise InvalidInput(f"日期格式无效: {fields['date']}")

    if "mold_count" in fields:
        if not _is_int(fields["mold_count"]) or fields["mold_count"] <= 0:
            raise InvalidInput("moldCount は正の整数で指定してください")

    if "duration" in fields:
        if not _is_int(fields["duration"]) or fields["duration"] < 0:
            raise InvalidInput("duration は 0 以上の整数で指定してください")

    _check_enums(fields, _RESERVATION_ENUMS)


def validate_personal_fields(fields: Mapping[str, Any]) -> None:
    """校验个人信息字段取值（年龄、月龄为非负整数）。"""
    for attr in ("age", "age_months"):
        if attr in fields and (not _is_int(fields[attr]) or fields[attr] < 0):
            raise InvalidInput(f"{attr} は 0 以上の整数で指定してください")


def validate_customer_fields(fields: Mapping[str, Any]) -> None:
    """校验顾客档案字段取值。

    Raises:
        InvalidInput: 年龄非法，或支付/预约状态不在允许范围内。
    """
    validate_personal_fields(fields)
    _check_enums(fields, _CUSTOMER_ENUMS)
