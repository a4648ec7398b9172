"""Web API 服务 - 预约管理 REST 接口

基于 FastAPI 提供预约、顾客、担当员工、拠点、账号与奖励台账的 REST 接口，
所有响应使用 ``{"success": bool, "data" | "error": ...}`` 信封格式。

使用方式：
    ```python
    server = WebServer(db_manager=db, port=8080)
    await server.startup()
    # 访问 http://localhost:8080/health 检查服务状态
    ```
"""
import asyncio
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from business.accounts import AccountService
from business.auth import AuthContext, require_manager, resolve_bearer
from common.errors import StudioError
from business.lifecycle import ReservationLifecycle
from business.migration import CustomerMigration
from config.settings import settings


def _ok(data: Any = None,
        warnings: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """成功响应信封。台账调整失败时附带 warnings（降级成功）。"""
    body: Dict[str, Any] = {"success": True, "data": data}
    if warnings:
        body["warnings"] = warnings
    return body


def _unwrap(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    """兼容 ``{"reservation": {...}}`` 与扁平两种请求体。"""
    inner = data.get(key)
    return inner if isinstance(inner, dict) else data


class WebServer:
    """预约管理 Web 服务

    路由：
    - POST /setup                       → 初始化数据（幂等）
    - POST /api/auth/login              → 登录，返回令牌
    - /api/users[/{id}]                 → 账号管理
    - /reservations[/{id}]              → 预约增删改查
    - PATCH /reservations/{id}/payment|delivery|confirmation → 状态切换
    - /customers[/{id}]                 → 顾客档案
    - /staff[/{id}]、/locations[/{id}]  → 主数据
    - /incentives[...]                  → 奖励台账
    - POST /migrate/reservations-to-customers → 顾客档案迁移
    - GET  /health                      → 健康检查
    """

    def __init__(
        self,
        db_manager,
        host: str = "0.0.0.0",
        port: int = 8080,
        secret_key: Optional[str] = None,
    ):
        self.db_manager = db_manager
        self.host = host
        self.port = port
        self.secret_key = secret_key or settings.jwt_secret
        self.lifecycle = ReservationLifecycle(db_manager)
        self.accounts = AccountService(db_manager, secret=self.secret_key)
        self.app = None
        self.running = False
        self._server_thread: Optional[threading.Thread] = None
        self._server = None  # uvicorn.Server 实例
        self._server_loop = None  # 服务器事件循环

    def create_app(self):
        """创建 FastAPI 应用"""
        from fastapi import Depends, FastAPI, Header, Request
        from fastapi.responses import JSONResponse

        app = FastAPI(
            title="予約管理システム",
            description="手足型アート工房 予約・顧客・インセンティブ管理 API",
            version="1.0.0",
        )
        db = self.db_manager
        lifecycle = self.lifecycle
        accounts = self.accounts
        secret = self.secret_key

        @app.exception_handler(StudioError)
        async def studio_error_handler(request: Request, exc: StudioError):
            if exc.status_code >= 500:
                logger.error(f"{request.method} {request.url.path} 失败: {exc.message}")
            else:
                logger.info(
                    f"{request.method} {request.url.path} -> "
                    f"{exc.status_code} {exc.message}"
                )
            return JSONResponse(
                status_code=exc.status_code,
                content={"success": False, "error": exc.message},
            )

        def get_current_user(
            authorization: Optional[str] = Header(None),
        ) -> AuthContext:
            """从 Authorization 请求头验证令牌"""
            return resolve_bearer(authorization, secret)

        def get_manager(
            auth: AuthContext = Depends(get_current_user),
        ) -> AuthContext:
            """仅允许管理者"""
            return require_manager(auth)

        # ==================== 初始化 / 健康检查 ====================

        @app.post("/setup")
        def setup():
            """初始化数据（仅在没有任何账号时执行）"""
            result = accounts.setup()
            return {"success": True, **result}

        @app.get("/health")
        def health_check():
            """健康检查"""
            return {
                "status": "ok",
                "timestamp": datetime.utcnow().isoformat(),
            }

        # ==================== 认证 / 账号 ====================

        @app.post("/api/auth/login")
        def login(data: dict):
            """登录认证"""
            result = accounts.login(data.get("username", ""), data.get("password", ""))
            return _ok(result)

        @app.get("/api/users")
        def users_list(_=Depends(get_manager)):
            return _ok(db.get_account_list())

        @app.post("/api/users")
        def users_create(data: dict, _=Depends(get_manager)):
            return _ok(accounts.create_account(data))

        @app.put("/api/users/{user_id}")
        def users_update(user_id: str, data: dict,
                         auth: AuthContext = Depends(get_current_user)):
            return _ok(accounts.update_account(auth, user_id, data))

        @app.delete("/api/users/{user_id}")
        def users_delete(user_id: str, auth: AuthContext = Depends(get_manager)):
            accounts.delete_account(auth, user_id)
            return _ok()

        # ==================== 预约 ====================

        @app.get("/reservations")
        def reservations_list(
            start: Optional[str] = None,
            end: Optional[str] = None,
            staff: Optional[str] = None,
            customerId: Optional[str] = None,
            q: Optional[str] = None,
            _=Depends(get_current_user),
        ):
            return _ok(lifecycle.list(
                start_date=start, end_date=end, staff=staff,
                customer_id=customerId, search=q,
            ))

        @app.get("/reservations/{reservation_id}")
        def reservations_get(reservation_id: str, _=Depends(get_current_user)):
            return _ok(lifecycle.get(reservation_id))

        @app.post("/reservations")
        def reservations_create(data: dict,
                                auth: AuthContext = Depends(get_current_user)):
            created = lifecycle.create(
                _unwrap(data, "reservation"), created_by=auth.user_id
            )
            return _ok(created, warnings=created.get("warnings"))

        @app.put("/reservations/{reservation_id}")
        def reservations_update(reservation_id: str, data: dict,
                                _=Depends(get_current_user)):
            updated = lifecycle.update(reservation_id, _unwrap(data, "reservation"))
            return _ok(updated, warnings=updated.get("warnings"))

        @app.delete("/reservations/{reservation_id}")
        def reservations_delete(reservation_id: str, _=Depends(get_current_user)):
            result = lifecycle.delete(reservation_id)
            return _ok(result, warnings=result.get("warnings"))

        @app.patch("/reservations/{reservation_id}/payment")
        def reservations_payment(reservation_id: str, _=Depends(get_current_user)):
            return _ok(lifecycle.advance_payment_status(reservation_id))

        @app.patch("/reservations/{reservation_id}/delivery")
        def reservations_delivery(reservation_id: str, _=Depends(get_current_user)):
            return _ok(lifecycle.advance_delivery_status(reservation_id))

        @app.patch("/reservations/{reservation_id}/confirmation")
        def reservations_confirmation(reservation_id: str,
                                      _=Depends(get_current_user)):
            return _ok(lifecycle.advance_reservation_status(reservation_id))

        # ==================== 顾客 ====================

        @app.get("/customers")
        def customers_list(q: Optional[str] = None, _=Depends(get_current_user)):
            if q:
                customers = db.customers.search(q)
            else:
                customers = db.customers.list_customers()
            return _ok([c.to_dict() for c in customers])

        @app.get("/customers/{customer_id}")
        def customers_get(customer_id: str, _=Depends(get_current_user)):
            info = db.get_customer_info(customer_id)
            if info is None:
                return JSONResponse(
                    status_code=404,
                    content={"success": False, "error": "顧客が見つかりません"},
                )
            return _ok(info)

        @app.post("/customers")
        def customers_create(data: dict, _=Depends(get_current_user)):
            return _ok(db.customers.create(_unwrap(data, "customer")).to_dict())

        @app.put("/customers/{customer_id}")
        def customers_update(customer_id: str, data: dict,
                             _=Depends(get_current_user)):
            customer = db.customers.update(customer_id, _unwrap(data, "customer"))
            return _ok(customer.to_dict())

        @app.delete("/customers/{customer_id}")
        def customers_delete(customer_id: str, _=Depends(get_current_user)):
            db.customers.delete(customer_id)
            return _ok()

        # ==================== 主数据 ====================

        @app.get("/staff")
        def staff_list(_=Depends(get_current_user)):
            return _ok(db.get_staff_list())

        @app.post("/staff")
        def staff_create(data: dict, _=Depends(get_manager)):
            item = _unwrap(data, "staff")
            member = db.staff.add(item.get("name", ""), item_id=item.get("id"))
            return _ok(member.to_dict())

        @app.delete("/staff/{staff_id}")
        def staff_delete(staff_id: str, _=Depends(get_manager)):
            db.staff.delete(staff_id)
            return _ok()

        @app.get("/locations")
        def locations_list(_=Depends(get_current_user)):
            return _ok(db.get_location_list())

        @app.post("/locations")
        def locations_create(data: dict, _=Depends(get_manager)):
            item = _unwrap(data, "location")
            location = db.locations.add(item.get("name", ""), item_id=item.get("id"))
            return _ok(location.to_dict())

        @app.delete("/locations/{location_id}")
        def locations_delete(location_id: str, _=Depends(get_manager)):
            db.locations.delete(location_id)
            return _ok()

        # ==================== 奖励台账 ====================

        @app.get("/incentives")
        def incentives_list(staff: Optional[str] = None,
                            month: Optional[str] = None,
                            _=Depends(get_current_user)):
            return _ok(db.get_incentive_list(staff=staff, month=month))

        @app.get("/incentives/summary")
        def incentives_summary(month: str, _=Depends(get_current_user)):
            return _ok(db.incentives.monthly_summary(month))

        @app.get("/incentives/discrepancies")
        def incentives_discrepancies(_=Depends(get_manager)):
            return _ok(db.find_incentive_discrepancies())

        @app.post("/incentives/rebuild")
        def incentives_rebuild(_=Depends(get_manager)):
            return _ok({"entries": db.rebuild_incentives()})

        # ==================== 数据迁移 ====================

        @app.post("/migrate/reservations-to-customers")
        def migrate_reservations(_=Depends(get_manager)):
            report = CustomerMigration(db).run()
            return _ok(report.to_dict())

        return app

    async def startup(self):
        """启动 Web 服务器"""
        import uvicorn

        self.app = self.create_app()
        self.running = True

        def run_server():
            """在独立线程中运行 uvicorn 服务器"""
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._server_loop = loop

            config = uvicorn.Config(
                self.app,
                host=self.host,
                port=self.port,
                log_level="warning",
                loop="asyncio",
            )
            self._server = uvicorn.Server(config)
            # 信号处理由 app.py 统一管理
            self._server.install_signal_handlers = lambda: None

            try:
                loop.run_until_complete(self._server.serve())
            except Exception as e:
                logger.error(f"服务器运行出错: {e}")
            finally:
                loop.run_until_complete(loop.shutdown_asyncgens())
                loop.close()

        self._server_thread = threading.Thread(target=run_server, daemon=True)
        self._server_thread.start()

        # 等待服务器启动
        max_wait = 5
        waited = 0
        while self._server is None and waited < max_wait:
            await asyncio.sleep(0.1)
            waited += 0.1

        logger.info(f"予約管理 API 已启动: http://{self.host}:{self.port}")

    async def shutdown(self):
        """停止 Web 服务器，确保端口被释放"""
        self.running = False

        if self._server is not None:
            logger.info("正在停止 Web 服务器...")
            self._server.should_exit = True

            # 等待服务器线程自然退出（最多 3 秒）
            if self._server_thread and self._server_thread.is_alive():
                self._server_thread.join(timeout=3.0)

            if self._server_thread and self._server_thread.is_alive():
                logger.warning("服务器未在 3 秒内优雅停止，强制退出...")
                self._server.force_exit = True
                self._server_thread.join(timeout=2.0)
                if self._server_thread.is_alive():
                    logger.warning("服务器线程未能停止，将随主进程退出")

            self._server = None
            self._server_loop = None
            self._server_thread = None

        logger.info("予約管理 API 已停止")
