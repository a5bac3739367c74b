"""
SQLite rule store - read contract for the rules engine and default-rule seeding
"""

import json
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from ..rules.defaults import default_rules
from ..rules.engine import rule_type_value
from ..rules.models import TaxRule
from .connection import DatabaseManager

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, code, rule_type, action_type, condition, value, effective_from, effective_to, "
    "priority, category, name, description, reference, is_active"
)


def _row_to_rule(row: Any) -> TaxRule:
    return TaxRule(
        id=row["id"],
        code=row["code"],
        rule_type=row["rule_type"],
        action=row["action_type"],
        condition=row["condition"],  # JSON text, parsed by the engine
        value=Decimal(row["value"]) if row["value"] is not None else None,
        effective_from=row["effective_from"],
        effective_to=row["effective_to"],
        priority=row["priority"],
        category=row["category"],
        name=row["name"],
        description=row["description"],
        reference=row["reference"],
        is_active=bool(row["is_active"]),
    )


def _rows_to_rules(rows: Iterable[Any]) -> List[TaxRule]:
    """Convert rows one at a time; a corrupt row is logged and skipped"""
    rules = []
    for row in rows:
        try:
            rules.append(_row_to_rule(row))
        except (ValueError, ArithmeticError) as e:
            logger.warning(f"Skipping unreadable rule row {row['id']}: {e}")
    return rules


class SQLiteRuleRepository:
    """RuleRepository backed by the tax_rules table"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def list_rules(self, rule_type: str, as_of_date: date) -> List[TaxRule]:
        """Active rules of one type effective on as_of_date, in creation order"""
        day = as_of_date.isoformat()
        rows = await self.db.fetchall(
            f"""
            SELECT {_COLUMNS} FROM tax_rules
            WHERE rule_type = ? AND is_active = 1
              AND (effective_from IS NULL OR effective_from <= ?)
              AND (effective_to IS NULL OR effective_to >= ?)
            ORDER BY seq
            """,
            (rule_type_value(rule_type), day, day),
        )
        return _rows_to_rules(rows)

    async def list_all(self, rule_type: Optional[str] = None, active_only: bool = False) -> List[TaxRule]:
        """Every stored rule, optionally filtered, in creation order"""
        clauses = []
        params: List[Any] = []
        if rule_type:
            clauses.append("rule_type = ?")
            params.append(rule_type_value(rule_type))
        if active_only:
            clauses.append("is_active = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self.db.fetchall(f"SELECT {_COLUMNS} FROM tax_rules {where} ORDER BY seq", tuple(params))
        return _rows_to_rules(rows)

    async def get_rule(self, rule_id: str) -> Optional[TaxRule]:
        row = await self.db.fetchone(f"SELECT {_COLUMNS} FROM tax_rules WHERE id = ?", (rule_id,))
        rules = _rows_to_rules([row]) if row is not None else []
        return rules[0] if rules else None

    async def save_rule(self, rule: TaxRule, version: str = "1.0.0") -> None:
        """Insert a rule, or update it in place (keeping its creation order)"""
        condition = rule.condition
        if condition is not None and not isinstance(condition, str):
            condition = json.dumps(condition, ensure_ascii=False)
        await self.db.execute(
            """
            INSERT INTO tax_rules (
                id, code, rule_type, action_type, condition, value, effective_from, effective_to,
                priority, category, name, description, reference, is_active, version
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                code = excluded.code,
                rule_type = excluded.rule_type,
                action_type = excluded.action_type,
                condition = excluded.condition,
                value = excluded.value,
                effective_from = excluded.effective_from,
                effective_to = excluded.effective_to,
                priority = excluded.priority,
                category = excluded.category,
                name = excluded.name,
                description = excluded.description,
                reference = excluded.reference,
                is_active = excluded.is_active,
                version = excluded.version,
                updated_at = CURRENT_TIMESTAMP
            """,
            (
                rule.id,
                rule.code,
                rule.rule_type,
                rule.action.value,
                condition,
                str(rule.value) if rule.value is not None else None,
                rule.effective_from.isoformat() if rule.effective_from else None,
                rule.effective_to.isoformat() if rule.effective_to else None,
                rule.priority,
                rule.category,
                rule.name,
                rule.description,
                rule.reference,
                1 if rule.is_active else 0,
                version,
            ),
        )

    async def count(self, version: Optional[str] = None) -> int:
        if version is None:
            row = await self.db.fetchone("SELECT COUNT(*) FROM tax_rules")
        else:
            row = await self.db.fetchone("SELECT COUNT(*) FROM tax_rules WHERE version = ?", (version,))
        return row[0] if row else 0


class RulesPopulator:
    """Populate the default rule set into the rule store"""

    def __init__(self, repository: SQLiteRuleRepository):
        self.repository = repository

    async def populate_default_rules(
        self,
        version: str = "1.0.0",
        force: bool = False,
        rules: Optional[Iterable[TaxRule]] = None,
    ) -> int:
        """
        Seed default rules

        Args:
            version: version tag stored with each rule
            force: if True, delete existing rules of this version first
            rules: rule set to seed (defaults to the statutory defaults)

        Returns:
            Number of rules for the version after seeding
        """
        try:
            existing = await self.repository.count(version)
            if existing > 0 and not force:
                logger.info(f"Rules version {version} already exists. Use force=True to overwrite.")
                return existing

            if force:
                await self.repository.db.execute("DELETE FROM tax_rules WHERE version = ?", (version,))
                logger.info(f"Deleted existing rules for version {version}")

            count = 0
            for rule in (rules if rules is not None else default_rules()):
                await self.repository.save_rule(rule, version)
                count += 1
                logger.debug(f"Inserted rule: {rule.code} ({rule.id})")

            logger.info(f"Populated {count} rules for version {version}")
            return count
        except Exception as e:
            logger.error(f"Error populating rules: {e}")
            raise
