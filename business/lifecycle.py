"""预约生命周期引擎

预约的创建、更新、删除和状态切换的唯一入口，负责维持三者的一致性：

1. 顾客档案：合并预约中携带的个人信息（只覆盖提供了的字段）
2. 预约记录：逐字段合并（存在则覆盖，缺失则保留）
3. 奖励台账：按（担当员工, 日期）增减件数

顾客档案与预约记录在同一事务中提交。奖励台账是可重新计算的派生数据，
在主记录提交之后调整；调整失败时有限次重试，仍失败则记录日志并以
警告形式（LedgerInconsistency）返回，不回滚主记录。

从主记录提交前到台账调整结束，一直持有相关键的台账锁，
台账重建不会在两者之间插入。
"""
from contextlib import ExitStack
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from common.errors import InvalidInput, LedgerInconsistency, NotFound
from common.fields import (
    PERSONAL_FIELDS, RESERVATION_FIELDS, generate_id, merge_partial, normalize,
    validate_personal_fields, validate_reservation_fields,
)
from config.settings import settings
from database import DatabaseManager
from database.models import Customer, Reservation
from .status import (
    DEFAULT_DELIVERY_STATUS, DEFAULT_PAYMENT_STATUS, DEFAULT_RESERVATION_STATUS,
    next_delivery_status, next_payment_status, next_reservation_status,
)

# 更新时允许覆盖的预约属性（customer_id 可改，created_by 不可改）
_RESERVATION_MERGEABLE = [
    attr for attr in RESERVATION_FIELDS.values() if attr != "created_by"
]


def display_customer_info(reservation: Reservation,
                          customer: Optional[Customer]) -> Dict[str, Any]:
    """合并顾客档案与预约上的旧版内嵌信息，生成显示用的顾客信息。

    顾客档案优先；档案不存在（悬空引用）时回退到预约上的旧版字段，
    都没有时返回空值而不是报错。
    """
    def pick(attr: str, empty: Any) -> Any:
        value = getattr(customer, attr, None) if customer else None
        if value in (None, ""):
            value = getattr(reservation, attr, None)
        return empty if value in (None, "") else value

    return {
        "parentName": pick("parent_name", ""),
        "childName": pick("child_name", ""),
        "age": pick("age", 0),
        "ageMonths": pick("age_months", 0),
        "phoneNumber": pick("phone_number", ""),
        "address": pick("address", ""),
        "lineUrl": pick("line_url", ""),
    }


def searchable_text(view: Dict[str, Any]) -> str:
    """生成用于全文搜索的小写文本。"""
    parts = [
        view.get("parentName"),
        view.get("childName"),
        view.get("customerId"),
        view.get("location"),
        view.get("staffInCharge"),
        view.get("note"),
        view.get("id"),
    ]
    return " ".join(str(p) for p in parts if p).lower()


class ReservationLifecycle:
    """预约生命周期引擎

    Attributes:
        db: 数据库管理器。
        retry_attempts: 奖励台账调整的最大尝试次数。

    Example::

        engine = ReservationLifecycle(db)
        created = engine.create({
            "date": "2025-10-27",
            "staffInCharge": "佐藤",
            "moldCount": 2,
            "parentName": "山田花子",
        })
        engine.update(created["id"], {"staffInCharge": "鈴木"})
        engine.delete(created["id"])
    """

    def __init__(self, db: DatabaseManager,
                 retry_attempts: Optional[int] = None) -> None:
        self.db = db
        self.retry_attempts = max(
            1, retry_attempts or settings.ledger_retry_attempts
        )

    # ================================================================
    # 读取
    # ================================================================

    def get(self, reservation_id: str) -> Dict[str, Any]:
        """获取预约（含顾客信息）。

        Raises:
            NotFound: 预约不存在。
        """
        reservation = self.db.reservations.get(reservation_id)
        if reservation is None:
            raise NotFound("予約が見つかりません")
        customer = self.db.customers.get(reservation.customer_id)
        return self._present(reservation, customer)

    def list(self, start_date: Optional[str] = None,
             end_date: Optional[str] = None,
             staff: Optional[str] = None,
             customer_id: Optional[str] = None,
             search: Optional[str] = None) -> List[Dict[str, Any]]:
        """按条件查询预约（含顾客信息）。

        Args:
            start_date: 起始日期（含）。
            end_date: 结束日期（含）。
            staff: 担当员工。
            customer_id: 顾客ID。
            search: 搜索关键词，匹配姓名、顾客ID、拠点、担当、备注和预约ID。

        Returns:
            预约字典列表。
        """
        reservations = self.db.reservations.list_reservations(
            start_date=start_date, end_date=end_date,
            staff=staff, customer_id=customer_id,
        )
        customers = self.db.customers.get_many(
            [r.customer_id for r in reservations]
        )
        views = [
            self._present(r, customers.get(r.customer_id))
            for r in reservations
        ]
        if search:
            keyword = search.strip().lower()
            views = [v for v in views if keyword in searchable_text(v)]
        return views

    # ================================================================
    # 写入
    # ================================================================

    def create(self, data: Dict[str, Any],
               created_by: Optional[str] = None) -> Dict[str, Any]:
        """创建预约。

        Args:
            data: 预约数据（camelCase），必须包含 date，且提供家长/宝宝姓名
                之一，或引用已有姓名的顾客ID。
            created_by: 创建者用户ID（可选）。

        Returns:
            新预约字典（含顾客信息与 warnings 列表）。

        Raises:
            InvalidInput: 缺少日期或身份信息，或字段值非法。
        """
        fields = normalize(data, RESERVATION_FIELDS)
        personal = normalize(data, PERSONAL_FIELDS)
        fields.pop("created_by", None)
        validate_reservation_fields(fields)
        validate_personal_fields(personal)

        if not fields.get("date"):
            raise InvalidInput("date は必須です")

        customer_id = fields.get("customer_id")
        if not (personal.get("parent_name") or personal.get("child_name")):
            known = self.db.customers.get(customer_id) if customer_id else None
            if known is None or not (known.parent_name or known.child_name):
                raise InvalidInput("保護者名またはお子様の名前は必須です")

        fields["customer_id"] = customer_id or generate_id("C")
        fields.setdefault("payment_status", DEFAULT_PAYMENT_STATUS)
        fields.setdefault("reservation_status", DEFAULT_RESERVATION_STATUS)
        fields.setdefault("delivery_status", DEFAULT_DELIVERY_STATUS)
        fields.setdefault("mold_count", 1)
        if created_by:
            fields["created_by"] = created_by

        key = (fields.get("staff_in_charge"), fields["date"])
        with self.db.incentives.locked(key):
            with self.db.get_session() as session:
                customer = self.db.customers.upsert(
                    fields["customer_id"], personal, session=session
                )
                reservation = self.db.reservations.insert(
                    fields, session=session
                )
                session.commit()

            logger.info(
                f"予約作成: {reservation.id} date={reservation.date} "
                f"staff={reservation.staff_in_charge or '-'} "
                f"customer={reservation.customer_id}"
            )

            warnings = self._ledger(
                lambda: self.db.incentives.adjust(
                    reservation.staff_in_charge, reservation.date, 1
                ),
                reservation.staff_in_charge, reservation.date, 1,
            )
        return self._present(reservation, customer, warnings)

    def update(self, reservation_id: str,
               partial: Dict[str, Any]) -> Dict[str, Any]:
        """部分更新预约。

        担当员工或日期变化时，台账上的一件预约从旧键移动到新键。
        partial 中的个人信息合并到（可能已变更的）customer_id 对应的顾客档案。

        Args:
            reservation_id: 预约ID。
            partial: 要更新的字段（camelCase），缺失字段保留原值。

        Returns:
            合并后的预约字典（含顾客信息与 warnings 列表）。

        Raises:
            NotFound: 预约不存在。
            InvalidInput: 字段值非法。
        """
        fields = normalize(partial, RESERVATION_FIELDS)
        personal = normalize(partial, PERSONAL_FIELDS)
        validate_reservation_fields(fields)
        validate_personal_fields(personal)

        with ExitStack() as stack:
            with self.db.get_session() as session:
                reservation = session.get(
                    Reservation, reservation_id, with_for_update=True
                )
                if reservation is None:
                    raise NotFound("予約が見つかりません")

                old_staff = reservation.staff_in_charge
                old_date = reservation.date

                merge_partial(reservation, fields, _RESERVATION_MERGEABLE)
                reservation.updated_at = datetime.utcnow()
                stack.enter_context(self.db.incentives.locked(
                    (old_staff, old_date),
                    (reservation.staff_in_charge, reservation.date),
                ))

                if personal:
                    # 旧数据可能没有顾客ID，只有需要写入档案时才分配
                    if not reservation.customer_id:
                        reservation.customer_id = generate_id("C")
                    customer = self.db.customers.upsert(
                        reservation.customer_id, personal, session=session
                    )
                elif reservation.customer_id:
                    customer = self.db.customers.get(
                        reservation.customer_id, session=session
                    )
                else:
                    customer = None
                session.commit()

            new_staff = reservation.staff_in_charge
            new_date = reservation.date
            warnings: List[LedgerInconsistency] = []
            if (old_staff, old_date) != (new_staff, new_date):
                logger.info(
                    f"予約 {reservation_id} 担当/日付変更: "
                    f"({old_staff}, {old_date}) -> ({new_staff}, {new_date})"
                )
                warnings = self._ledger(
                    lambda: self.db.incentives.move(
                        old_staff, old_date, new_staff, new_date
                    ),
                    new_staff, new_date, 1,
                )

        return self._present(reservation, customer, warnings)

    def delete(self, reservation_id: str) -> Dict[str, Any]:
        """删除预约，并将其（担当员工, 日期）的台账件数减一。

        不修改顾客档案。

        Returns:
            ``{"id": ..., "warnings": [...]}``。

        Raises:
            NotFound: 预约不存在。
        """
        with ExitStack() as stack:
            with self.db.get_session() as session:
                reservation = session.get(
                    Reservation, reservation_id, with_for_update=True
                )
                if reservation is None:
                    raise NotFound("予約が見つかりません")
                staff = reservation.staff_in_charge
                date = reservation.date
                stack.enter_context(self.db.incentives.locked((staff, date)))
                session.delete(reservation)
                session.commit()

            logger.info(
                f"予約削除: {reservation_id} date={date} staff={staff or '-'}"
            )

            warnings = self._ledger(
                lambda: self.db.incentives.adjust(staff, date, -1),
                staff, date, -1,
            )
        return {
            "id": reservation_id,
            "warnings": [w.to_dict() for w in warnings],
        }

    # ================================================================
    # 状态切换
    # ================================================================

    def advance_payment_status(self, reservation_id: str) -> Dict[str, Any]:
        """支付状态前进一步：paid -> unpaid -> pending -> paid。"""
        return self._advance(reservation_id, "payment_status", next_payment_status)

    def advance_delivery_status(self, reservation_id: str) -> Dict[str, Any]:
        """交付状态前进一步：pending -> shipped -> completed -> pending。"""
        return self._advance(
            reservation_id, "delivery_status", next_delivery_status
        )

    def advance_reservation_status(self, reservation_id: str) -> Dict[str, Any]:
        """确认状态前进一步：standby -> confirmed -> standby。"""
        return self._advance(
            reservation_id, "reservation_status", next_reservation_status
        )

    def _advance(self, reservation_id: str, attr: str,
                 step: Callable[[Optional[str]], str]) -> Dict[str, Any]:
        with self.db.get_session() as session:
            reservation = session.get(
                Reservation, reservation_id, with_for_update=True
            )
            if reservation is None:
                raise NotFound("予約が見つかりません")
            before = getattr(reservation, attr)
            setattr(reservation, attr, step(before))
            reservation.updated_at = datetime.utcnow()
            customer = self.db.customers.get(
                reservation.customer_id, session=session
            )
            session.commit()

        logger.info(
            f"予約 {reservation_id} {attr}: {before} -> {getattr(reservation, attr)}"
        )
        return self._present(reservation, customer)

    # ================================================================
    # 内部方法
    # ================================================================

    def _ledger(self, action: Callable[[], Any], staff: Optional[str],
                date: Optional[str], delta: int
                ) -> List[LedgerInconsistency]:
        """执行台账调整，失败时有限次重试。

        Returns:
            未能生效时返回包含一个 LedgerInconsistency 的列表，否则为空列表。
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                action()
                return []
            except SQLAlchemyError as e:
                last_error = e
                logger.warning(
                    f"奖励台账调整失败（第 {attempt}/{self.retry_attempts} 次）: {e}"
                )

        issue = LedgerInconsistency(
            f"奖励台账调整未生效，需要重建台账: {last_error}",
            staff=staff or "", date=date or "", delta=delta,
        )
        logger.error(
            f"LedgerInconsistency staff={staff} date={date} delta={delta}: "
            f"{last_error}"
        )
        return [issue]

    @staticmethod
    def _present(reservation: Reservation, customer: Optional[Customer],
                 warnings: Optional[List[LedgerInconsistency]] = None
                 ) -> Dict[str, Any]:
        view = reservation.to_dict()
        view.update(display_customer_info(reservation, customer))
        view["customer"] = customer.to_dict() if customer else None
        if warnings is not None:
            view["warnings"] = [w.to_dict() for w in warnings]
        return view
