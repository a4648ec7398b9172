"""数据库管理器 —— 统一门面（Facade）。

DatabaseManager 是 database 模块的统一入口，组合了所有子仓库，
提供两套 API：

1. **子仓库访问**（细粒度）：
   通过 ``db.customers``、``db.reservations`` 等属性直接访问子仓库，
   返回 ORM 对象，适合需要精细控制的场景。

2. **便捷方法**（粗粒度）：
   提供扁平化的方法（如 ``get_staff_list()``、``get_incentive()``），
   返回字典/基本类型，适合上层业务代码和 API 调用。

预约的增删改必须经由 business.lifecycle.ReservationLifecycle，
以保证顾客档案和奖励台账与预约记录保持一致。
"""
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session

from config.settings import settings
from .connection import DatabaseConnection
from .entity_repos import (
    AccountRepository, CustomerRepository,
    LocationRepository, StaffRepository
)
from .business_repos import ReservationRepository, IncentiveRepository


class DatabaseManager:
    """数据库管理器 —— 统一门面。

    Attributes:
        conn: 数据库连接管理器。
        accounts: 员工账号仓库。
        customers: 顾客档案仓库。
        locations: 拠点仓库。
        staff: 担当员工仓库。
        reservations: 预约记录仓库。
        incentives: 奖励台账仓库。

    Example::

        db = DatabaseManager("sqlite:///data/studio.db")
        db.create_tables()

        # 通过子仓库访问（返回 ORM 对象）
        customer = db.customers.get("C1700000000000-abc123xyz")

        # 通过便捷方法访问（返回字典）
        entry = db.get_incentive("佐藤", "2025-10-27")
    """

    def __init__(self, database_url: Optional[str] = None,
                 reward_per_reservation: Optional[int] = None) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
            reward_per_reservation: 每件预约的奖励金额，默认取settings配置。
        """
        # 基础设施层
        self.conn = DatabaseConnection(database_url)

        # 实体仓库
        self.accounts = AccountRepository(self.conn)
        self.customers = CustomerRepository(self.conn)
        self.locations = LocationRepository(self.conn)
        self.staff = StaffRepository(self.conn)

        # 业务记录仓库
        self.reservations = ReservationRepository(self.conn)
        self.incentives = IncentiveRepository(
            self.conn,
            reward_per_reservation or settings.reward_per_reservation
        )

    # ================================================================
    # 基础设施方法
    # ================================================================

    def create_tables(self) -> None:
        """创建所有数据库表（幂等操作）。"""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """获取数据库会话。"""
        return self.conn.get_session()

    @property
    def database_url(self) -> str:
        """数据库连接URL。"""
        return self.conn.database_url

    @property
    def engine(self):
        """SQLAlchemy 引擎对象。"""
        return self.conn.engine

    def close(self) -> None:
        """关闭数据库连接，释放所有资源。"""
        self.conn.close()

    # ================================================================
    # 便捷查询方法
    # ================================================================

    def get_staff_list(self) -> List[Dict[str, Any]]:
        """获取担当员工列表。"""
        return [s.to_dict() for s in self.staff.list_items()]

    def get_location_list(self) -> List[Dict[str, Any]]:
        """获取拠点列表。"""
        return [loc.to_dict() for loc in self.locations.list_items()]

    def get_account_list(self) -> List[Dict[str, Any]]:
        """获取账号列表（不含密码哈希）。"""
        return [a.to_dict() for a in self.accounts.list_accounts()]

    def get_customer_info(self, customer_id: str) -> Optional[Dict[str, Any]]:
        """获取顾客档案及其预约列表。

        Args:
            customer_id: 顾客ID。

        Returns:
            顾客信息字典（含 reservations 列表），不存在返回 None。
        """
        customer = self.customers.get(customer_id)
        if customer is None:
            return None

        info = customer.to_dict()
        info["reservations"] = [
            r.to_dict()
            for r in self.reservations.list_reservations(customer_id=customer_id)
        ]
        return info

    def get_incentive(self, staff: str, date: str) -> Optional[Dict[str, Any]]:
        """获取（担当员工, 日期）的台账记录，不存在返回 None。"""
        entry = self.incentives.get(staff, date)
        return entry.to_dict() if entry else None

    def get_incentive_list(self, staff: Optional[str] = None,
                           month: Optional[str] = None
                           ) -> List[Dict[str, Any]]:
        """查询台账记录列表。"""
        return [
            e.to_dict()
            for e in self.incentives.list_entries(staff=staff, month=month)
        ]

    def rebuild_incentives(self) -> int:
        """从预约记录重新计算整个奖励台账。

        持有全部台账锁，在同一会话中统计件数并重写台账后提交，
        期间进行中的预约写入要么已计入统计、要么等待重建完成后再调整。
        锁只在本进程内有效，多进程部署时应在维护时段执行。

        Returns:
            重建后的台账记录数。
        """
        with self.incentives.locked_all():
            with self.get_session() as session:
                counts = self.reservations.count_by_staff_date(session=session)
                written = self.incentives.rebuild(counts, session=session)
                session.commit()
        return written

    def find_incentive_discrepancies(self) -> List[Dict[str, Any]]:
        """比较台账与预约记录，列出不一致的键。

        Returns:
            ``[{"staff", "date", "expected", "actual"}]``，一致时为空列表。
        """
        expected = self.reservations.count_by_staff_date()
        actual = {
            (e.staff_in_charge, e.date): e.count
            for e in self.incentives.list_entries()
        }
        discrepancies = []
        for key in sorted(set(expected) | set(actual)):
            if expected.get(key, 0) != actual.get(key, 0):
                discrepancies.append({
                    "staff": key[0],
                    "date": key[1],
                    "expected": expected.get(key, 0),
                    "actual": actual.get(key, 0),
                })
        return discrepancies
