"""认证与令牌原语。

令牌格式为三段式：
``base64url(header).base64url(payload).base64url(sha256(header.payload + secret))``，
payload 携带 ``{userId, username, role, exp}``，exp 为绝对 Unix 秒，
每次校验时与当前时间比较。

密码哈希为 ``sha256(password + secret)`` 的十六进制字符串。
"""
import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger

from common.errors import Forbidden, Unauthorized

MANAGER_ROLE = "manager"
STAFF_ROLE = "staff"
ROLES = (MANAGER_ROLE, STAFF_ROLE)

_HEADER = {"alg": "HS256", "typ": "JWT"}


@dataclass
class AuthContext:
    """已认证的请求主体"""
    user_id: str
    username: str
    role: str

    @property
    def is_manager(self) -> bool:
        return self.role == MANAGER_ROLE


def hash_password(password: str, secret: str) -> str:
    """计算密码哈希。"""
    return hashlib.sha256((password + secret).encode("utf-8")).hexdigest()


def verify_password(password: str, password_hash: str, secret: str) -> bool:
    """校验密码是否与哈希匹配。"""
    return hmac.compare_digest(hash_password(password, secret), password_hash)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def _sign(message: str, secret: str) -> str:
    digest = hashlib.sha256((message + secret).encode("utf-8")).digest()
    return _b64url_encode(digest)


def create_token(payload: Dict[str, Any], secret: str) -> str:
    """生成签名令牌。

    Args:
        payload: 令牌载荷，应包含 exp（Unix 秒）。
        secret: 签名密钥。

    Returns:
        三段式令牌字符串。
    """
    header = _b64url_encode(json.dumps(_HEADER, separators=(",", ":")).encode("utf-8"))
    body = _b64url_encode(
        json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    )
    message = f"{header}.{body}"
    return f"{message}.{_sign(message, secret)}"


def verify_token(token: str, secret: str,
                 now: Optional[float] = None) -> Dict[str, Any]:
    """校验令牌并返回载荷。

    Args:
        token: 三段式令牌。
        secret: 签名密钥。
        now: 当前 Unix 秒（可选，默认取系统时间）。

    Returns:
        令牌载荷字典。

    Raises:
        Unauthorized: 格式错误、签名不匹配或已过期。
    """
    parts = token.split(".") if token else []
    if len(parts) != 3:
        raise Unauthorized("Unauthorized - Invalid token")

    header, body, signature = parts
    if not hmac.compare_digest(signature, _sign(f"{header}.{body}", secret)):
        logger.warning("令牌签名不匹配")
        raise Unauthorized("Unauthorized - Invalid token")

    try:
        payload = json.loads(_b64url_decode(body).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"令牌载荷解析失败: {e}")
        raise Unauthorized("Unauthorized - Invalid token") from e

    current = time.time() if now is None else now
    exp = payload.get("exp")
    if exp is None or exp < current:
        raise Unauthorized("Unauthorized - Token expired")

    return payload


def issue_token(user_id: str, username: str, role: str, secret: str,
                ttl_hours: int, now: Optional[float] = None) -> str:
    """为账号签发有效期为 ttl_hours 小时的令牌。"""
    current = time.time() if now is None else now
    return create_token(
        {
            "userId": user_id,
            "username": username,
            "role": role,
            "exp": int(current) + ttl_hours * 60 * 60,
        },
        secret,
    )


def resolve_bearer(authorization: Optional[str], secret: str) -> AuthContext:
    """从 Authorization 请求头解析认证主体。

    Raises:
        Unauthorized: 请求头缺失或令牌无效。
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Unauthorized - No token provided")

    payload = verify_token(authorization[7:], secret)
    return AuthContext(
        user_id=payload.get("userId", ""),
        username=payload.get("username", ""),
        role=payload.get("role", ""),
    )


def require_manager(auth: AuthContext) -> AuthContext:
    """角色闸门：仅允许 manager 通过。

    Raises:
        Forbidden: 调用者不是 manager。
    """
    if not auth.is_manager:
        raise Forbidden("Forbidden - Admin access required")
    return auth
