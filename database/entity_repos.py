"""实体仓库 —— 基础实体的数据访问层。

管理系统中的基础实体（员工账号、顾客档案、拠点、担当员工），
这些实体被预约记录引用，但不随预约的增删而被动修改
（顾客档案只在显式操作或生命周期引擎合并个人信息时写入）。

每个仓库继承 BaseCRUD 获得通用能力，并添加领域特定的查询方法。
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from sqlalchemy import or_
from sqlalchemy.orm import Session
from loguru import logger

from common.errors import Conflict, NotFound
from common.fields import (
    CUSTOMER_FIELDS, generate_id, merge_partial, normalize,
    validate_customer_fields,
)
from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import Account, Customer, Location, StaffMember

# 新建顾客档案时的缺省值
CUSTOMER_DEFAULTS: Dict[str, Any] = {
    "parent_name": "",
    "child_name": "",
    "age": 0,
    "age_months": 0,
    "phone_number": "",
    "address": "",
    "line_url": "",
    "note": "",
    "payment_status": "unpaid",
    "reservation_status": "none",
}

_CUSTOMER_MERGEABLE = [
    attr for attr in CUSTOMER_FIELDS.values() if attr != "customer_id"
]


class AccountRepository(BaseCRUD):
    """员工账号 仓库（身份存储）。

    账号以 username 作为主键，密码仅以哈希形式保存。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get(self, user_id: str,
            session: Optional[Session] = None) -> Optional[Account]:
        """按用户ID获取账号。"""
        return self.get_by_id(Account, user_id, session=session)

    def create(self, username: str, password_hash: str, name: str,
               role: str, incentive_rate: Optional[float] = None,
               require_password_change: bool = True,
               session: Optional[Session] = None) -> Account:
        """创建账号。

        Args:
            username: 登录用户名（同时作为用户ID）。
            password_hash: 密码哈希。
            name: 显示名称。
            role: 角色（manager/staff）。
            incentive_rate: 奖励比例，仅 staff 有效。
            require_password_change: 首次登录是否强制修改密码。
            session: 外部会话（可选）。

        Returns:
            新建的 Account 对象。

        Raises:
            Conflict: 用户名已存在。
        """
        def _do(sess):
            if sess.get(Account, username) is not None:
                raise Conflict("Username already exists")
            account = Account(
                user_id=username,
                username=username,
                password_hash=password_hash,
                name=name,
                role=role,
                incentive_rate=incentive_rate if role == "staff" else None,
                require_password_change=require_password_change,
            )
            sess.add(account)
            sess.flush()
            return account

        if session:
            return _do(session)

        with self._get_session() as sess:
            account = _do(sess)
            sess.commit()
            logger.info(f"已创建账号: {username} ({role})")
            return account

    def list_accounts(self,
                      session: Optional[Session] = None) -> List[Account]:
        """获取全部账号。"""
        def _query(sess):
            return sess.query(Account).order_by(Account.created_at).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def update(self, user_id: str, session: Optional[Session] = None,
               **fields: Any) -> Account:
        """更新账号字段。

        Raises:
            NotFound: 账号不存在。
        """
        account = self.update_by_id(Account, user_id, session=session, **fields)
        if account is None:
            raise NotFound("User not found")
        return account

    def delete(self, user_id: str,
               session: Optional[Session] = None) -> bool:
        """删除账号。"""
        return self.delete_by_id(Account, user_id, session=session)

    def has_any(self, session: Optional[Session] = None) -> bool:
        """是否已存在任意账号。"""
        return self.count(Account, session=session) > 0


class CustomerRepository(BaseCRUD):
    """顾客档案 仓库。

    以 customer_id 去重，写入采用逐字段合并语义：
    输入中存在的字段覆盖旧值，缺失的字段保留旧值，从不因缺失而清空。
    合并在写入事务中读取的最新记录上进行，因此是逐字段的后写者胜出。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get(self, customer_id: str,
            session: Optional[Session] = None) -> Optional[Customer]:
        """按顾客ID获取档案。"""
        if not customer_id:
            return None
        return self.get_by_id(Customer, customer_id, session=session)

    def get_many(self, customer_ids: List[str],
                 session: Optional[Session] = None) -> Dict[str, Customer]:
        """批量获取顾客档案。

        Returns:
            customer_id -> Customer 的字典，不存在的ID不出现在结果中。
        """
        ids = [cid for cid in set(customer_ids) if cid]
        if not ids:
            return {}

        def _query(sess):
            rows = sess.query(Customer).filter(
                Customer.customer_id.in_(ids)
            ).all()
            return {c.customer_id: c for c in rows}

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def upsert(self, customer_id: Optional[str], fields: Dict[str, Any],
               session: Optional[Session] = None) -> Customer:
        """创建或合并顾客档案。

        Args:
            customer_id: 顾客ID，为空时自动生成。
            fields: 顾客字段（camelCase 或 snake_case 均可）。
            session: 外部会话（可选）。

        Returns:
            合并后的 Customer 对象。
        """
        values = normalize(fields, CUSTOMER_FIELDS)
        values.pop("customer_id", None)
        customer_id = customer_id or generate_id("C")

        def _do(sess):
            customer = sess.get(Customer, customer_id, with_for_update=True)
            if customer is None:
                customer = Customer(customer_id=customer_id, **CUSTOMER_DEFAULTS)
                merge_partial(customer, values, _CUSTOMER_MERGEABLE)
                customer.created_at = datetime.utcnow()
                sess.add(customer)
                logger.info(f"新建顾客档案: {customer_id}")
            elif merge_partial(customer, values, _CUSTOMER_MERGEABLE):
                customer.updated_at = datetime.utcnow()
            sess.flush()
            return customer

        if session:
            return _do(session)

        with self._get_session() as sess:
            customer = _do(sess)
            sess.commit()
            return customer

    def create(self, fields: Dict[str, Any],
               session: Optional[Session] = None) -> Customer:
        """显式创建顾客档案。

        Raises:
            InvalidInput: 年龄或状态取值非法。
            Conflict: 顾客ID已存在。
        """
        validate_customer_fields(normalize(fields, CUSTOMER_FIELDS))
        customer_id = fields.get("customerId") or fields.get("customer_id")
        if customer_id and self.get(customer_id, session=session) is not None:
            raise Conflict("この顧客IDは既に使用されています")
        return self.upsert(customer_id, fields, session=session)

    def update(self, customer_id: str, fields: Dict[str, Any],
               session: Optional[Session] = None) -> Customer:
        """合并更新已存在的顾客档案。

        Raises:
            InvalidInput: 年龄或状态取值非法。
            NotFound: 顾客不存在。
        """
        validate_customer_fields(normalize(fields, CUSTOMER_FIELDS))
        if self.get(customer_id, session=session) is None:
            raise NotFound("顧客が見つかりません")
        return self.upsert(customer_id, fields, session=session)

    def delete(self, customer_id: str,
               session: Optional[Session] = None) -> bool:
        """删除顾客档案（不级联删除引用它的预约）。"""
        deleted = self.delete_by_id(Customer, customer_id, session=session)
        if deleted:
            logger.info(f"已删除顾客档案: {customer_id}")
        return deleted

    def list_customers(self,
                       session: Optional[Session] = None) -> List[Customer]:
        """获取全部顾客档案（按创建时间倒序）。"""
        def _query(sess):
            return sess.query(Customer).order_by(
                Customer.created_at.desc()
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def search(self, keyword: str,
               session: Optional[Session] = None) -> List[Customer]:
        """按顾客ID、姓名或电话搜索顾客。

        Args:
            keyword: 搜索关键词。

        Returns:
            匹配的顾客列表。
        """
        def _query(sess):
            return sess.query(Customer).filter(
                or_(
                    Customer.customer_id.contains(keyword),
                    Customer.parent_name.contains(keyword),
                    Customer.child_name.contains(keyword),
                    Customer.phone_number.contains(keyword),
                )
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class _MasterListRepository(BaseCRUD):
    """名称唯一的主数据列表仓库（拠点、担当员工共用）。"""

    model = None
    duplicate_message = "既に存在します"

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def list_items(self, session: Optional[Session] = None) -> List[Any]:
        def _query(sess):
            return sess.query(self.model).order_by(self.model.id).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def add(self, name: str, item_id: Optional[str] = None,
            session: Optional[Session] = None) -> Any:
        """添加条目。

        Raises:
            Conflict: 同名条目已存在。
        """
        def _do(sess):
            exists = sess.query(self.model).filter(
                self.model.name == name
            ).first()
            if exists:
                raise Conflict(self.duplicate_message)
            item = self.model(id=item_id or generate_id(), name=name)
            sess.add(item)
            sess.flush()
            return item

        if session:
            return _do(session)

        with self._get_session() as sess:
            item = _do(sess)
            sess.commit()
            return item

    def delete(self, item_id: str,
               session: Optional[Session] = None) -> bool:
        return self.delete_by_id(self.model, item_id, session=session)


class LocationRepository(_MasterListRepository):
    """拠点 仓库。"""

    model = Location
    duplicate_message = "この拠点は既に存在します"


class StaffRepository(_MasterListRepository):
    """担当员工 仓库。

    担当员工名称用于预约的 staff_in_charge 字段与奖励台账的键。
    """

    model = StaffMember
    duplicate_message = "このスタッフは既に存在します"
