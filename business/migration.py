"""顾客档案迁移流程

旧版预约记录直接内嵌家长姓名、宝宝姓名、电话等个人信息。
本流程一次性扫描全部预约，将内嵌信息提取到顾客档案中，
并从预约上清除这些字段，使预约只保留 customer_id 引用。

- 按预约日期顺序处理，顾客档案仅在该 customer_id 尚不存在时创建，
  同一顾客以最早一条预约上的信息为准（可重复执行）
- 单条记录失败会被收集到错误列表，不中断整个批次
- 第二次执行不会产生任何变化，报告的迁移数为 0

本流程假定执行期间没有并发写入（维护窗口内运行）。
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from common.errors import StudioError
from common.fields import generate_id
from database import DatabaseManager
from database.models import PERSONAL_FIELDS, Customer, Reservation


@dataclass
class MigrationReport:
    """迁移结果报告

    Attributes:
        customers_migrated: 新建的顾客档案数。
        reservations_updated: 清除了内嵌个人信息的预约数。
        errors: 失败记录列表，每项包含 reservationId 与 error。
    """
    customers_migrated: int = 0
    reservations_updated: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customersMigrated": self.customers_migrated,
            "reservationsUpdated": self.reservations_updated,
            "errors": list(self.errors),
        }


class CustomerMigration:
    """预约内嵌个人信息 -> 顾客档案 的迁移流程"""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    def run(self) -> MigrationReport:
        """执行迁移。

        Returns:
            MigrationReport 迁移结果。
        """
        report = MigrationReport()

        with self.db.get_session() as session:
            reservation_ids = [
                row[0] for row in session.query(Reservation.id).order_by(
                    Reservation.date, Reservation.created_at, Reservation.id
                ).all()
            ]
        logger.info(f"开始迁移顾客档案，共 {len(reservation_ids)} 条预约")

        for reservation_id in reservation_ids:
            try:
                created = self._migrate_one(reservation_id)
            except (SQLAlchemyError, StudioError, ValueError, TypeError) as e:
                logger.error(f"预约 {reservation_id} 迁移失败: {e}")
                report.errors.append({
                    "reservationId": reservation_id,
                    "error": str(e),
                })
                continue

            if created is None:
                continue
            report.reservations_updated += 1
            if created:
                report.customers_migrated += 1

        logger.info(
            f"迁移完成: 新建顾客 {report.customers_migrated}，"
            f"更新预约 {report.reservations_updated}，"
            f"失败 {len(report.errors)}"
        )
        return report

    def _migrate_one(self, reservation_id: str) -> Optional[bool]:
        """迁移单条预约。

        Returns:
            None 表示无需迁移；True 表示新建了顾客档案；
            False 表示顾客档案已存在，仅清除了预约上的内嵌信息。
        """
        with self.db.get_session() as session:
            reservation = session.get(Reservation, reservation_id)
            if reservation is None or not reservation.has_legacy_fields():
                return None

            legacy = reservation.legacy_fields()
            customer_id = reservation.customer_id or generate_id("C")

            created = False
            if session.get(Customer, customer_id) is None:
                legacy["payment_status"] = reservation.payment_status
                legacy["reservation_status"] = reservation.reservation_status
                self.db.customers.upsert(customer_id, legacy, session=session)
                created = True

            reservation.customer_id = customer_id
            for name in PERSONAL_FIELDS:
                setattr(reservation, name, None)
            session.commit()

        logger.debug(
            f"预约 {reservation_id} -> 顾客 {customer_id}"
            f"{'（新建）' if created else ''}"
        )
        return created
