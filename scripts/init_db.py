"""初始化数据库：建表并写入初始管理员与示例主数据"""
import sys
import os

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from loguru import logger

from business.accounts import AccountService
from database import DatabaseManager


def init_database():
    """初始化数据库和种子数据"""
    logger.info("Initializing database...")

    db = DatabaseManager()
    try:
        logger.info("Creating tables...")
        db.create_tables()

        logger.info("Inserting seed data...")
        result = AccountService(db).setup()
        if result["skipped"]:
            logger.info("Seed data already present, skipped")
        else:
            counts = result["counts"]
            logger.info(
                f"Created {counts['users']} account(s), "
                f"{counts['locations']} location(s), {counts['staff']} staff"
            )
            logger.info(result["message"])
    finally:
        db.close()

    logger.info("Database initialization completed!")


if __name__ == "__main__":
    init_database()
