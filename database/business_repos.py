"""业务记录仓库 —— 预约记录与奖励台账的数据访问层。

预约记录是日常经营的主数据；奖励台账是由预约派生的聚合数据，
按（担当员工, 日期）记录件数与奖励金额。

台账的所有变更都经由 IncentiveRepository.adjust / move 完成，
同一键上的调整在进程内加锁、在数据库中行锁，保证读改写不会丢失更新。
"""
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, List, Dict, Any, ContextManager, Iterator, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session
from loguru import logger

from common.fields import generate_id
from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import Reservation, IncentiveEntry

LedgerKey = Tuple[str, str]


class ReservationRepository(BaseCRUD):
    """预约记录 仓库。

    只负责持久化，不处理顾客档案和奖励台账；
    三者的一致性由 business.lifecycle.ReservationLifecycle 维护。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get(self, reservation_id: str,
            session: Optional[Session] = None) -> Optional[Reservation]:
        """按ID获取预约。"""
        return self.get_by_id(Reservation, reservation_id, session=session)

    def insert(self, values: Dict[str, Any],
               session: Optional[Session] = None) -> Reservation:
        """插入新预约。

        Args:
            values: 预约属性（snake_case），未提供 id 时自动生成。
            session: 外部会话（可选）。

        Returns:
            新建的 Reservation 对象。
        """
        def _do(sess):
            reservation = Reservation(
                id=values.get("id") or generate_id(),
                created_at=datetime.utcnow(),
                **{k: v for k, v in values.items() if k != "id"}
            )
            sess.add(reservation)
            sess.flush()
            return reservation

        if session:
            return _do(session)

        with self._get_session() as sess:
            reservation = _do(sess)
            sess.commit()
            return reservation

    def delete(self, reservation_id: str,
               session: Optional[Session] = None) -> bool:
        """删除预约。"""
        return self.delete_by_id(Reservation, reservation_id, session=session)

    def list_reservations(self, start_date: Optional[str] = None,
                          end_date: Optional[str] = None,
                          staff: Optional[str] = None,
                          customer_id: Optional[str] = None,
                          session: Optional[Session] = None
                          ) -> List[Reservation]:
        """按条件查询预约（按日期、时间段排序）。

        Args:
            start_date: 起始日期（含），YYYY-MM-DD。
            end_date: 结束日期（含），YYYY-MM-DD。
            staff: 担当员工。
            customer_id: 顾客ID。

        Returns:
            预约列表。
        """
        def _query(sess):
            query = sess.query(Reservation)
            if start_date:
                query = query.filter(Reservation.date >= start_date)
            if end_date:
                query = query.filter(Reservation.date <= end_date)
            if staff:
                query = query.filter(Reservation.staff_in_charge == staff)
            if customer_id:
                query = query.filter(Reservation.customer_id == customer_id)
            return query.order_by(
                Reservation.date, Reservation.time_slot
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def count_by_staff_date(self, session: Optional[Session] = None
                            ) -> Dict[LedgerKey, int]:
        """按（担当员工, 日期）统计预约件数。

        未指定担当员工的预约不计入。
        """
        def _query(sess):
            rows = sess.query(
                Reservation.staff_in_charge,
                Reservation.date,
                func.count(Reservation.id),
            ).filter(
                Reservation.staff_in_charge.isnot(None),
                Reservation.staff_in_charge != "",
                Reservation.date.isnot(None),
                Reservation.date != "",
            ).group_by(
                Reservation.staff_in_charge, Reservation.date
            ).all()
            return {(staff, date): count for staff, date, count in rows}

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class IncentiveRepository(BaseCRUD):
    """奖励台账 仓库。

    不变量：
    - amount == count * reward_per_reservation
    - 不存在 count <= 0 的记录（件数归零即删除）

    Attributes:
        reward_per_reservation: 每件预约的奖励金额。
    """

    # 固定数量的分段锁，键按哈希落到其中一段；锁只在本进程内有效
    STRIPE_COUNT = 64
    _stripes: List[threading.RLock] = [
        threading.RLock() for _ in range(STRIPE_COUNT)
    ]

    def __init__(self, conn: DatabaseConnection,
                 reward_per_reservation: int = 1000) -> None:
        super().__init__(conn)
        self.reward_per_reservation = reward_per_reservation

    @classmethod
    def _stripe_index(cls, key: LedgerKey) -> int:
        return hash(key) % cls.STRIPE_COUNT

    @contextmanager
    def _hold(self, indexes: List[int]) -> Iterator[None]:
        # 按段号升序加锁，避免交叉加锁死锁
        locks = [self._stripes[i] for i in sorted(set(indexes))]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def locked(self, *keys: Optional[LedgerKey]) -> ContextManager[None]:
        """持有给定（担当员工, 日期）键的进程内锁。

        不完整的键（员工或日期为空）被忽略。锁可重入，
        调用方在持锁期间仍可调用 adjust / move。

        Example::

            with db.incentives.locked(("佐藤", "2025-10-27")):
                ...
        """
        return self._hold([
            self._stripe_index(key) for key in keys
            if key is not None and key[0] and key[1]
        ])

    def locked_all(self) -> ContextManager[None]:
        """持有全部分段锁，期间不会有台账调整并发执行。"""
        return self._hold(list(range(self.STRIPE_COUNT)))

    def _apply(self, sess: Session, staff: str, date: str,
               delta: int) -> Optional[IncentiveEntry]:
        """在给定会话中对单个键应用增量（不提交）。

        件数降到 0 或以下时删除记录，返回 None。
        """
        entry = sess.query(IncentiveEntry).filter(
            IncentiveEntry.staff_in_charge == staff,
            IncentiveEntry.date == date,
        ).with_for_update().first()

        count = (entry.count if entry else 0) + delta
        if count <= 0:
            if entry is not None:
                sess.delete(entry)
                sess.flush()
            return None

        if entry is None:
            entry = IncentiveEntry(staff_in_charge=staff, date=date)
            sess.add(entry)
        entry.count = count
        entry.amount = count * self.reward_per_reservation
        entry.updated_at = datetime.utcnow()
        sess.flush()
        return entry

    def adjust(self, staff: Optional[str], date: Optional[str],
               delta: int) -> Optional[IncentiveEntry]:
        """调整（担当员工, 日期）的预约件数。

        担当员工或日期为空时不产生台账效果。

        Args:
            staff: 担当员工。
            date: 日期，YYYY-MM-DD。
            delta: 件数增量（可为负）。

        Returns:
            调整后的 IncentiveEntry，记录被删除或未产生效果时返回 None。
        """
        if not staff or not date or delta == 0:
            return self.get(staff, date) if staff and date else None

        with self.locked((staff, date)):
            with self._get_session() as sess:
                entry = self._apply(sess, staff, date, delta)
                sess.commit()

        logger.debug(f"奖励台账调整: {staff} {date} {delta:+d}")
        return entry

    def move(self, old_staff: Optional[str], old_date: Optional[str],
             new_staff: Optional[str], new_date: Optional[str]) -> None:
        """将一件预约从旧键移动到新键。

        减旧键、加新键在同一事务内完成，要么都生效要么都不生效。
        新旧键相同时不做任何操作；任一键不完整时该侧不产生效果。
        """
        old_key = (old_staff, old_date) if old_staff and old_date else None
        new_key = (new_staff, new_date) if new_staff and new_date else None
        if old_key == new_key:
            return

        keys = [k for k in (old_key, new_key) if k is not None]
        with self.locked(*keys):
            with self._get_session() as sess:
                if old_key is not None:
                    self._apply(sess, old_key[0], old_key[1], -1)
                if new_key is not None:
                    self._apply(sess, new_key[0], new_key[1], 1)
                sess.commit()

        logger.debug(f"奖励台账移动: {old_key} -> {new_key}")

    def get(self, staff: str, date: str,
            session: Optional[Session] = None) -> Optional[IncentiveEntry]:
        """获取（担当员工, 日期）的台账记录。"""
        def _query(sess):
            return sess.query(IncentiveEntry).filter(
                IncentiveEntry.staff_in_charge == staff,
                IncentiveEntry.date == date,
            ).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_entries(self, staff: Optional[str] = None,
                     month: Optional[str] = None,
                     session: Optional[Session] = None
                     ) -> List[IncentiveEntry]:
        """查询台账记录。

        Args:
            staff: 担当员工过滤（可选）。
            month: 月份过滤，YYYY-MM（可选）。

        Returns:
            按日期、员工排序的台账记录列表。
        """
        def _query(sess):
            query = sess.query(IncentiveEntry)
            if staff:
                query = query.filter(IncentiveEntry.staff_in_charge == staff)
            if month:
                query = query.filter(IncentiveEntry.date.like(f"{month}-%"))
            return query.order_by(
                IncentiveEntry.date, IncentiveEntry.staff_in_charge
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def monthly_summary(self, month: str) -> List[Dict[str, Any]]:
        """按员工汇总指定月份的件数与奖励金额。

        Args:
            month: 月份，YYYY-MM。

        Returns:
            ``[{"staff", "count", "amount"}]``，按件数降序排列。
        """
        totals: Dict[str, int] = {}
        for entry in self.list_entries(month=month):
            totals[entry.staff_in_charge] = (
                totals.get(entry.staff_in_charge, 0) + entry.count
            )

        summary = [
            {
                "staff": staff,
                "count": count,
                "amount": count * self.reward_per_reservation,
            }
            for staff, count in totals.items()
        ]
        summary.sort(key=lambda item: (-item["count"], item["staff"]))
        return summary

    def rebuild(self, counts: Dict[LedgerKey, int],
                session: Optional[Session] = None) -> int:
        """按给定的件数统计重建整个台账。

        用于从预约记录重新计算台账、修复已报告的不一致。
        传入外部会话时不提交，由调用方决定提交时机。

        Args:
            counts: （担当员工, 日期）-> 件数。
            session: 外部会话（可选）。

        Returns:
            重建后的台账记录数。
        """
        def _do(sess):
            now = datetime.utcnow()
            sess.query(IncentiveEntry).delete()
            written = 0
            for (staff, date), count in counts.items():
                if count <= 0:
                    continue
                sess.add(IncentiveEntry(
                    staff_in_charge=staff,
                    date=date,
                    count=count,
                    amount=count * self.reward_per_reservation,
                    updated_at=now,
                ))
                written += 1
            sess.flush()
            return written

        if session:
            written = _do(session)
        else:
            with self._get_session() as sess:
                written = _do(sess)
                sess.commit()

        logger.info(f"奖励台账已重建: {written} 条记录")
        return written
