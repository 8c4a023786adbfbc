"""数据库模块：ORM 模型、连接管理与各类仓库。"""
from .manager import DatabaseManager
from .connection import DatabaseConnection

__all__ = ["DatabaseManager", "DatabaseConnection"]
