"""预约状态轴与循环切换规则。

预约有三条相互独立的状态轴，每条轴按固定顺序循环：

- 支付：paid -> unpaid -> pending -> paid
- 交付：pending -> shipped -> completed -> pending
- 确认：standby -> confirmed -> standby

切换是当前状态的纯函数，不涉及奖励台账。
"""
from typing import Optional, Tuple

from common.errors import InvalidInput
from common.fields import DELIVERY_CYCLE, PAYMENT_CYCLE, RESERVATION_CYCLE

DEFAULT_PAYMENT_STATUS = "unpaid"
DEFAULT_DELIVERY_STATUS = "pending"
DEFAULT_RESERVATION_STATUS = "standby"


def _advance(cycle: Tuple[str, ...], current: Optional[str],
             default: str, axis: str) -> str:
    state = current or default
    if state not in cycle:
        raise InvalidInput(f"未知的{axis}状态: {state}")
    return cycle[(cycle.index(state) + 1) % len(cycle)]


def next_payment_status(current: Optional[str]) -> str:
    """支付状态前进一步。未设置时按 unpaid 处理。"""
    return _advance(PAYMENT_CYCLE, current, DEFAULT_PAYMENT_STATUS, "支付")


def next_delivery_status(current: Optional[str]) -> str:
    """交付状态前进一步。未设置时按 pending 处理。"""
    return _advance(DELIVERY_CYCLE, current, DEFAULT_DELIVERY_STATUS, "交付")


def next_reservation_status(current: Optional[str]) -> str:
    """确认状态前进一步。未设置时按 standby 处理。"""
    return _advance(
        RESERVATION_CYCLE, current, DEFAULT_RESERVATION_STATUS, "预约"
    )
