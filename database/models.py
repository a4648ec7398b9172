"""SQLAlchemy ORM 模型定义。

本模块定义了所有数据库表的ORM模型，包括：
- 员工账号（登录身份）、拠点、担当员工等基础主数据
- 顾客档案（按 customer_id 去重）
- 预约记录
- 奖励台账（按担当员工 + 日期聚合的派生数据）
"""
from typing import Dict, Any, Optional
from sqlalchemy import (
    Column, Integer, Float, String, Text, Boolean, DateTime, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from datetime import datetime

# SQLAlchemy declarative base，所有模型都继承自此类
# 设置 __allow_unmapped__ = True 以兼容 SQLAlchemy 2.0 的类型注解要求
Base = declarative_base()

# 为Base类添加__allow_unmapped__属性，允许使用旧式类型注解
Base.__allow_unmapped__ = True


# 顾客个人信息字段（顾客档案与旧版预约记录共有）
PERSONAL_FIELDS = (
    "parent_name", "child_name", "age", "age_months",
    "phone_number", "address", "line_url",
)


class Account(Base):
    """员工账号表模型（身份存储）。

    Attributes:
        user_id: 主键，与 username 相同。
        username: 登录用户名，唯一。
        password_hash: 密码哈希（sha256 十六进制）。
        name: 显示名称。
        role: 角色，可选值：manager（管理者）/ staff（员工）。
        incentive_rate: 奖励比例，仅 staff 角色使用。
        require_password_change: 下次登录是否需要修改密码。
        created_at: 创建时间。
    """
    __tablename__ = "accounts"

    user_id: str = Column(String(64), primary_key=True)
    username: str = Column(String(64), nullable=False, unique=True)
    password_hash: str = Column(String(128), nullable=False)
    name: str = Column(String(50), nullable=False)
    role: str = Column(String(20), nullable=False, default="staff")  # manager / staff
    incentive_rate: Optional[float] = Column(Float)
    require_password_change: bool = Column(Boolean, default=False)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """转换为对外字典（不含密码哈希）。"""
        return {
            "id": self.user_id,
            "username": self.username,
            "name": self.name,
            "role": self.role,
            "incentiveRate": self.incentive_rate,
            "requirePasswordChange": bool(self.require_password_change),
        }


class Location(Base):
    """拠点（门店）主数据表模型。"""
    __tablename__ = "locations"

    id: str = Column(String(64), primary_key=True)
    name: str = Column(String(100), nullable=False, unique=True)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}


class StaffMember(Base):
    """担当员工主数据表模型。

    预约记录通过 staff_in_charge 字段引用员工名称，
    员工主数据仅用于下拉选择，不与预约建立外键。
    """
    __tablename__ = "staff_members"

    id: str = Column(String(64), primary_key=True)
    name: str = Column(String(50), nullable=False, unique=True)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}


class Customer(Base):
    """顾客档案表模型。

    每个 customer_id 至多一条记录，多条预约通过 customer_id 引用同一顾客。

    Attributes:
        customer_id: 主键，客户端指定或自动生成（时间戳 + 随机后缀）。
        parent_name: 家长姓名。
        child_name: 宝宝姓名。
        age: 年龄（岁）。
        age_months: 月龄，仅在 age 为 0 时有意义。
        phone_number: 联系电话。
        address: 地址。
        line_url: LINE 联系链接。
        note: 备注。
        payment_status: 支付状态（paid/unpaid/pending）。
        reservation_status: 预约状态（standby/confirmed/none）。
        created_at: 创建时间。
        updated_at: 更新时间。
    """
    __tablename__ = "customers"

    customer_id: str = Column(String(64), primary_key=True)
    parent_name: str = Column(String(50), default="")
    child_name: str = Column(String(50), default="")
    age: int = Column(Integer, default=0)
    age_months: int = Column(Integer, default=0)
    phone_number: str = Column(String(30), default="")
    address: str = Column(Text, default="")
    line_url: str = Column(String(255), default="")
    note: str = Column(Text, default="")
    payment_status: str = Column(String(20), default="unpaid")
    reservation_status: str = Column(String(20), default="none")
    created_at: datetime = Column(DateTime, default=datetime.utcnow)
    updated_at: Optional[datetime] = Column(DateTime)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customerId": self.customer_id,
            "parentName": self.parent_name or "",
            "childName": self.child_name or "",
            "age": self.age or 0,
            "ageMonths": self.age_months or 0,
            "phoneNumber": self.phone_number or "",
            "address": self.address or "",
            "lineUrl": self.line_url or "",
            "note": self.note or "",
            "paymentStatus": self.payment_status,
            "reservationStatus": self.reservation_status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class Reservation(Base):
    """预约记录表模型。

    customer_id 是对顾客档案的引用，但不建立外键约束：
    删除顾客不会级联删除预约，读取时需将悬空引用视为"顾客信息不可用"。

    parent_name 等个人信息列仅为旧版数据保留，
    由迁移流程读取后清空，新的写入路径不会写入这些列。

    Attributes:
        id: 主键，时间戳 + 随机后缀。
        date: 预约日期，YYYY-MM-DD 字符串。
        time_slot: 时间段，如 "10:00"。
        duration: 时长（分钟）。
        customer_id: 顾客ID。
        mold_count: 模型数量，正整数。
        payment_status: 支付状态（paid/unpaid/pending）。
        reservation_status: 预约状态（standby/confirmed）。
        location: 拠点名称。
        staff_in_charge: 担当员工。
        delivery_status: 交付状态（pending/shipped/completed）。
        delivery_method: 交付方式（studio/shipping）。
        created_by: 创建者用户ID。
    """
    __tablename__ = "reservations"

    id: str = Column(String(64), primary_key=True)
    date: str = Column(String(10), nullable=False, index=True)
    time_slot: str = Column(String(20), default="")
    duration: int = Column(Integer, default=60)
    customer_id: str = Column(String(64), index=True)
    mold_count: int = Column(Integer, default=1)
    payment_status: str = Column(String(20), default="unpaid")
    reservation_status: str = Column(String(20), default="standby")
    location: str = Column(String(100), default="")
    staff_in_charge: str = Column(String(50), default="", index=True)
    note: str = Column(Text, default="")

    # 交付
    delivery_status: str = Column(String(20), default="pending")
    delivery_method: Optional[str] = Column(String(20))
    shipping_address: Optional[str] = Column(Text)
    scheduled_delivery_date: Optional[str] = Column(String(10))
    actual_delivery_date: Optional[str] = Column(String(10))

    # 刻字
    engraving_name: Optional[str] = Column(String(100))
    engraving_date: Optional[str] = Column(String(10))
    font_style: Optional[str] = Column(String(20))  # mincho / gothic / cursive

    # 旧版内嵌个人信息（仅迁移流程读取）
    parent_name: Optional[str] = Column(String(50))
    child_name: Optional[str] = Column(String(50))
    age: Optional[int] = Column(Integer)
    age_months: Optional[int] = Column(Integer)
    phone_number: Optional[str] = Column(String(30))
    address: Optional[str] = Column(Text)
    line_url: Optional[str] = Column(String(255))

    created_by: Optional[str] = Column(String(64))
    created_at: datetime = Column(DateTime, default=datetime.utcnow)
    updated_at: Optional[datetime] = Column(DateTime)

    def has_legacy_fields(self) -> bool:
        """是否仍携带旧版内嵌个人信息。"""
        return any(
            getattr(self, name) not in (None, "") for name in PERSONAL_FIELDS
        )

    def legacy_fields(self) -> Dict[str, Any]:
        """提取旧版内嵌个人信息（仅返回非空字段）。"""
        return {
            name: getattr(self, name)
            for name in PERSONAL_FIELDS
            if getattr(self, name) not in (None, "")
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "timeSlot": self.time_slot or "",
            "duration": self.duration,
            "customerId": self.customer_id or "",
            "moldCount": self.mold_count,
            "paymentStatus": self.payment_status,
            "reservationStatus": self.reservation_status,
            "location": self.location or "",
            "staffInCharge": self.staff_in_charge or "",
            "note": self.note or "",
            "deliveryStatus": self.delivery_status,
            "deliveryMethod": self.delivery_method,
            "shippingAddress": self.shipping_address,
            "scheduledDeliveryDate": self.scheduled_delivery_date,
            "actualDeliveryDate": self.actual_delivery_date,
            "engravingName": self.engraving_name,
            "engravingDate": self.engraving_date,
            "fontStyle": self.font_style,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class IncentiveEntry(Base):
    """奖励台账表模型。

    按（担当员工, 日期）聚合的派生数据，必须始终等于该员工当日
    预约件数乘以每件奖励金额。count <= 0 的记录不会被保存（直接删除），
    因此"记录不存在"与"件数为 0"等价。

    Attributes:
        id: 主键，自增整数。
        staff_in_charge: 担当员工。
        date: 日期，YYYY-MM-DD。
        count: 预约件数，始终大于 0。
        amount: 奖励金额 = count * 每件奖励。
        updated_at: 最后更新时间。
    """
    __tablename__ = "incentive_entries"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    staff_in_charge: str = Column(String(50), nullable=False)
    date: str = Column(String(10), nullable=False)
    count: int = Column(Integer, nullable=False, default=0)
    amount: int = Column(Integer, nullable=False, default=0)
    updated_at: datetime = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("staff_in_charge", "date", name="uq_incentive_staff_date"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "staff": self.staff_in_charge,
            "date": self.date,
            "count": self.count,
            "amount": self.amount,
        }
