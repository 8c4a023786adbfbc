"""初始化数据库"""
import sys
import os

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import DatabaseManager
from loguru import logger

# 演示门店：一名员工 + 一个库存物品
DEMO_TENANT = {"name": "Demo Studio", "slug": "demo"}
DEMO_EMPLOYEE = {
    "name": "Demo Mitarbeiter",
    "work_start": "09:00",
    "work_end": "17:00",
    "break_start": "12:00",
    "break_end": "13:00",
    "days_off": ["Sunday"],
}


def init_database(database_url=None, seed=True):
    """初始化数据库和种子数据"""
    logger.info("Initializing database...")

    db = DatabaseManager(database_url)

    logger.info("Creating tables...")
    db.create_tables()

    if seed:
        logger.info("Inserting seed data...")
        tenant = db.tenants.get_or_create(**DEMO_TENANT)
        if not db.staff.get_active_staff(tenant.id):
            db.staff.add(tenant.id, **DEMO_EMPLOYEE)
            db.inventory.add(tenant.id, "Shampoo", quantity=10, min_threshold=3, unit="Flasche")
        logger.info(f"Seeded tenant: {tenant.name} (id={tenant.id})")

    db.close()
    logger.info("Database initialization completed!")


if __name__ == "__main__":
    init_database(sys.argv[1] if len(sys.argv) > 1 else None)
