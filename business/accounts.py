"""员工账号业务逻辑

登录认证、账号增删改，以及首次启动时的初始化数据写入。
"""
from typing import Any, Dict, Optional

from loguru import logger

from common.errors import Forbidden, InvalidInput, NotFound, Unauthorized
from config.business_config import BusinessConfig, business_config
from config.settings import settings
from database import DatabaseManager
from .auth import (
    MANAGER_ROLE, ROLES, STAFF_ROLE, AuthContext, hash_password,
    issue_token, verify_password,
)


class AccountService:
    """员工账号服务

    Attributes:
        db: 数据库管理器。
        secret: 令牌签名与密码哈希使用的密钥。
        token_ttl_hours: 令牌有效期（小时）。
        min_password_length: 密码最小长度。
    """

    def __init__(self, db: DatabaseManager, secret: Optional[str] = None,
                 token_ttl_hours: Optional[int] = None,
                 min_password_length: Optional[int] = None) -> None:
        self.db = db
        self.secret = secret or settings.jwt_secret
        self.token_ttl_hours = token_ttl_hours or settings.token_ttl_hours
        self.min_password_length = (
            min_password_length or settings.min_password_length
        )

    def login(self, username: str, password: str) -> Dict[str, Any]:
        """校验凭据并签发令牌。

        Returns:
            ``{"user": {...}, "token": "..."}``。

        Raises:
            InvalidInput: 用户名或密码为空。
            Unauthorized: 凭据错误。
        """
        if not username or not password:
            raise InvalidInput("Username and password are required")

        account = self.db.accounts.get(username)
        if account is None or not verify_password(
            password, account.password_hash, self.secret
        ):
            logger.warning(f"登录失败: {username}")
            raise Unauthorized("Invalid credentials")

        token = issue_token(
            account.user_id, account.username, account.role,
            self.secret, self.token_ttl_hours,
        )
        logger.info(f"登录成功: {username}")
        return {"user": account.to_dict(), "token": token}

    def create_account(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """创建账号（管理者操作）。

        Args:
            data: 包含 username、password、name、role，可选 incentiveRate。

        Raises:
            InvalidInput: 缺少必填字段、角色非法或密码过短。
            Conflict: 用户名已存在。
        """
        username = data.get("username")
        password = data.get("password")
        name = data.get("name")
        role = data.get("role")
        if not username or not password or not name or not role:
            raise InvalidInput("Missing required fields")
        if role not in ROLES:
            raise InvalidInput(f"Unknown role: {role}")
        self._check_password(password, "Password")

        account = self.db.accounts.create(
            username=username,
            password_hash=hash_password(password, self.secret),
            name=name,
            role=role,
            incentive_rate=data.get("incentiveRate"),
            require_password_change=True,
        )
        return account.to_dict()

    def update_account(self, auth: AuthContext, user_id: str,
                       data: Dict[str, Any]) -> Dict[str, Any]:
        """更新账号（本人或管理者）。

        本人修改密码时必须提供当前密码；角色与奖励比例只有管理者可修改。

        Raises:
            Forbidden: 既不是本人也不是管理者。
            NotFound: 账号不存在。
            InvalidInput: 缺少当前密码或新密码过短。
            Unauthorized: 当前密码错误。
        """
        if auth.user_id != user_id and not auth.is_manager:
            raise Forbidden("Forbidden - You can only update your own profile")

        account = self.db.accounts.get(user_id)
        if account is None:
            raise NotFound("User not found")

        changes: Dict[str, Any] = {"require_password_change": False}
        new_password = data.get("newPassword")
        if new_password:
            if auth.user_id == user_id:
                current = data.get("currentPassword")
                if not current:
                    raise InvalidInput("現在のパスワードが必要です")
                if not verify_password(current, account.password_hash, self.secret):
                    raise Unauthorized("現在のパスワードが正しくありません")
            self._check_password(new_password, "新しいパスワード")
            changes["password_hash"] = hash_password(new_password, self.secret)

        if data.get("name") is not None:
            changes["name"] = data["name"]
        if auth.is_manager:
            role = data.get("role")
            if role:
                if role not in ROLES:
                    raise InvalidInput(f"Unknown role: {role}")
                changes["role"] = role
            if (role or account.role) == STAFF_ROLE and "incentiveRate" in data:
                changes["incentive_rate"] = data["incentiveRate"]
            elif role == MANAGER_ROLE:
                changes["incentive_rate"] = None

        updated = self.db.accounts.update(user_id, **changes)
        logger.info(f"账号已更新: {user_id} ({', '.join(sorted(changes))})")
        return updated.to_dict()

    def delete_account(self, auth: AuthContext, user_id: str) -> None:
        """删除账号（管理者操作，不能删除自己）。

        Raises:
            InvalidInput: 试图删除自己的账号。
        """
        if auth.user_id == user_id:
            raise InvalidInput("Cannot delete your own account")
        if self.db.accounts.delete(user_id):
            logger.info(f"账号已删除: {user_id}")

    def _check_password(self, password: str, label: str) -> None:
        if len(password) < self.min_password_length:
            raise InvalidInput(
                f"{label} must be at least {self.min_password_length} characters"
            )

    def setup(self, config: Optional[BusinessConfig] = None) -> Dict[str, Any]:
        """初始化数据（幂等）。

        仅当不存在任何账号时，写入初始管理员账号以及示例拠点、担当员工。

        Returns:
            ``{"skipped": True}`` 或各类数据的写入数量。
        """
        config = config or business_config
        if self.db.accounts.has_any():
            logger.info("初始化已跳过：账号已存在")
            return {"skipped": True, "message": "Data already exists"}

        manager = config.get_default_manager()
        self.db.accounts.create(
            username=manager["username"],
            password_hash=hash_password(
                settings.default_manager_password, self.secret
            ),
            name=manager["name"],
            role=manager.get("role", MANAGER_ROLE),
            require_password_change=True,
        )

        existing = {loc.name for loc in self.db.locations.list_items()}
        locations = [
            loc for loc in config.get_sample_locations()
            if loc["name"] not in existing
        ]
        for location in locations:
            self.db.locations.add(location["name"], item_id=location.get("id"))

        existing = {s.name for s in self.db.staff.list_items()}
        staff = [
            s for s in config.get_sample_staff() if s["name"] not in existing
        ]
        for member in staff:
            self.db.staff.add(member["name"], item_id=member.get("id"))

        logger.info(
            f"初始化完成: 账号 1，拠点 {len(locations)}，担当 {len(staff)}"
        )
        return {
            "skipped": False,
            "message": (
                f"Initial data setup completed. Please login with username: "
                f"{manager['username']} and change the default password immediately."
            ),
            "counts": {
                "users": 1,
                "locations": len(locations),
                "staff": len(staff),
            },
        }
