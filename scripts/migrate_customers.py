"""将旧版预约内嵌的个人信息迁移到顾客档案

可重复执行：第二次执行不会产生任何变化。

使用方式：
    python scripts/migrate_customers.py
    python scripts/migrate_customers.py --rebuild-incentives
"""
import argparse
import os
import sys

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from loguru import logger

from business.migration import CustomerMigration
from database import DatabaseManager


def main() -> int:
    parser = argparse.ArgumentParser(description="预约 -> 顾客档案 迁移")
    parser.add_argument("--db", default=None, help="数据库连接 URL")
    parser.add_argument("--rebuild-incentives", action="store_true",
                        help="迁移后根据预约记录重建奖励台账")
    args = parser.parse_args()

    db = DatabaseManager(args.db)
    try:
        db.create_tables()
        report = CustomerMigration(db).run()
        for error in report.errors:
            logger.error(f"{error['reservationId']}: {error['error']}")

        if args.rebuild_incentives:
            entries = db.rebuild_incentives()
            logger.info(f"奖励台账已重建: {entries} 条")
    finally:
        db.close()

    return 1 if report.errors else 0


if __name__ == "__main__":
    sys.exit(main())
