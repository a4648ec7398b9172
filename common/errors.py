"""业务异常定义。

所有业务异常继承自 StudioError，携带对应的 HTTP 状态码，
由 Web 层统一转换为 ``{"success": false, "error": ...}`` 响应。

LedgerInconsistency 是非致命异常：主记录已写入成功、奖励台账调整失败时
由生命周期引擎捕获并记录日志，以警告形式返回给调用方，不会向外抛出。
"""


class StudioError(Exception):
    """业务异常基类。"""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(StudioError):
    """必填字段缺失或字段值非法。"""

    status_code = 400


class Unauthorized(StudioError):
    """未提供令牌、令牌无效或已过期、凭据错误。"""

    status_code = 401


class Forbidden(StudioError):
    """角色权限不足。"""

    status_code = 403


class NotFound(StudioError):
    """预约/顾客/用户等记录不存在。"""

    status_code = 404


class Conflict(StudioError):
    """创建时用户名、顾客ID等唯一键重复。"""

    status_code = 409


class LedgerInconsistency(StudioError):
    """奖励台账调整未能生效（主记录已写入）。

    Attributes:
        staff: 担当员工。
        date: 日期。
        delta: 未能生效的增量。
    """

    status_code = 500

    def __init__(self, message: str, staff: str = "", date: str = "",
                 delta: int = 0) -> None:
        super().__init__(message)
        self.staff = staff
        self.date = date
        self.delta = delta

    def to_dict(self):
        return {
            "type": "ledger_inconsistency",
            "message": self.message,
            "staff": self.staff,
            "date": self.date,
            "delta": self.delta,
        }
