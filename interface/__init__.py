"""用户接口模块

- WebServer: 预约管理 REST API（FastAPI + uvicorn）

使用示例：
    ```python
    from interface import WebServer

    server = WebServer(db_manager=db, port=8080)
    await server.startup()
    ```
"""
from interface.web.server import WebServer

__all__ = ["WebServer"]
