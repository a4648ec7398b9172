#!/usr/bin/env python3
"""予約管理システム - Web 应用入口

启动预约管理 REST API，提供：
1. 预约增删改查与状态切换
2. 顾客档案、担当员工、拠点管理
3. 担当员工奖励台账查询与重建

使用方式：
    python app.py

    # 指定端口
    python app.py --port 8080

    # 指定数据库
    python app.py --db sqlite:///data/studio.db

    # 启动前写入初始数据（已有账号时自动跳过）
    python app.py --setup

环境变量（在 .env 文件中配置，运行 python scripts/setup_env.py 生成）：
    JWT_SECRET                令牌签名密钥（必填）
    DATABASE_URL              数据库连接地址
    WEB_HOST / WEB_PORT       监听地址 / 端口（默认 0.0.0.0:8080）
    TOKEN_TTL_HOURS           令牌有效期（默认 24 小时）
    DEFAULT_MANAGER_PASSWORD  初始管理员密码
    LOG_LEVEL                 日志级别（默认 INFO）
"""
import argparse
import asyncio
import signal
import sys

from loguru import logger

from config.settings import settings


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


async def _cleanup(web, db):
    """统一资源清理函数。

    确保 Web 服务器和数据库连接被正确关闭，释放端口和文件句柄。
    """
    logger.info("正在清理资源...")

    # 1. 停止 Web 服务器（释放端口）
    if web is not None:
        try:
            await web.shutdown()
        except Exception as e:
            logger.warning(f"停止 Web 服务器时出错: {e}")

    # 2. 关闭数据库连接（释放连接池）
    if db is not None:
        try:
            db.close()
        except Exception as e:
            logger.warning(f"关闭数据库连接时出错: {e}")

    logger.info("服务已停止")


async def main():
    parser = argparse.ArgumentParser(description="予約管理システム Web API")
    parser.add_argument("--host", default=settings.web_host,
                        help=f"监听地址 (默认: {settings.web_host})")
    parser.add_argument("--port", type=int, default=settings.web_port,
                        help=f"监听端口 (默认: {settings.web_port})")
    parser.add_argument("--db", default=settings.database_url,
                        help="数据库连接 URL")
    parser.add_argument("--setup", action="store_true",
                        help="启动前写入初始管理员与示例主数据")
    parser.add_argument("--log-level", default=settings.log_level,
                        help=f"日志级别 (默认: {settings.log_level})")
    args = parser.parse_args()

    _configure_logging(args.log_level)

    # 用于 finally 清理的引用
    web = None
    db = None

    try:
        from database import DatabaseManager
        from interface.web.server import WebServer

        db = DatabaseManager(args.db)
        db.create_tables()
        logger.info(f"数据库已连接: {db.database_url}")

        web = WebServer(db_manager=db, host=args.host, port=args.port)
        if args.setup:
            result = web.accounts.setup()
            logger.info(f"初始化: {result['message']}")

        await web.startup()

        print()
        print("=" * 60)
        print("  予約管理システムが起動しました")
        print(f"  API: http://localhost:{args.port}")
        print(f"  ドキュメント: http://localhost:{args.port}/docs")
        print(f"  データベース: {db.database_url}")
        print("=" * 60)
        print("  按 Ctrl+C 停止服务")
        print()

        loop = asyncio.get_running_loop()
        shutdown_event = asyncio.Event()
        _shutdown_requested = False

        def signal_handler(signum):
            """处理退出信号"""
            nonlocal _shutdown_requested
            if _shutdown_requested:
                logger.warning("再次收到退出信号，强制退出...")
                for task in asyncio.all_tasks(loop):
                    task.cancel()
                return
            _shutdown_requested = True
            logger.info(f"收到信号 {signum}，正在关闭服务...")
            shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler, sig)

        # 保持运行，直到收到退出信号
        await shutdown_event.wait()

    except asyncio.CancelledError:
        logger.info("任务被取消，正在清理...")
    except KeyboardInterrupt:
        logger.info("收到键盘中断信号")
    finally:
        await _cleanup(web, db)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        print("\n已停止。")
