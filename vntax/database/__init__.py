"""Database layer: SQLite connection and rule store"""

from .connection import DatabaseManager, get_db_manager
from .rule_store import RulesPopulator, SQLiteRuleRepository

__all__ = ["DatabaseManager", "get_db_manager", "RulesPopulator", "SQLiteRuleRepository"]
