"""
Validation rules: read-only predicates over the migration target.

A :class:`ValidationRule` is a descriptor: a ``SELECT`` that yields a single
scalar plus the value that scalar must equal.  Rules are evaluated by a
:class:`~migration_spine.execution.ports.RuleEvaluator`; the rule itself
never touches a database.

Examples:
    >>> rule = ValidationRule.record_count("users_copied", "users_v2", 42)
    >>> rule.query
    'SELECT COUNT(*) FROM users_v2'
    >>> rule.is_result_valid(" 42 ")
    True

    >>> ValidationRule.custom("bad", "DELETE FROM users")
    Traceback (most recent call last):
    ...
    ValidationError: validation rule 'bad' must be a read-only SELECT query

Tags:
    validation, rules, read-only, migration-spine
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from migration_spine.core.errors import ValidationError
from migration_spine.domain.enums import RuleType

_MUTATING_KEYWORDS = re.compile(
    r"\b(DELETE|UPDATE|INSERT|DROP|CREATE|ALTER|TRUNCATE|ATTACH|PRAGMA)\b",
    re.IGNORECASE,
)

# Quoted literal or identifier; a doubled quote inside is an escaped quote.
_QUOTED = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"")


def rule_query_violations(query: str) -> list[str]:
    """Return the reasons *query* is not an acceptable read-only rule query.

    Keywords inside quoted literals (``action = 'DELETE'``) are data, not
    statements, and are ignored.
    """
    stripped = query.strip()
    if not stripped:
        return ["query is empty"]
    problems = []
    if not stripped.upper().startswith("SELECT"):
        problems.append("query must start with SELECT")
    match = _MUTATING_KEYWORDS.search(_QUOTED.sub("''", stripped))
    if match:
        problems.append(f"query contains mutating keyword {match.group(1).upper()}")
    return problems


@dataclass(frozen=True)
class ValidationRule:
    """A named, read-only check whose scalar result is compared to ``expected_result``.

    ``expected_result=None`` means the rule passes whenever the query runs.
    """

    name: str
    query: str
    expected_result: str | None = None
    rule_type: RuleType = RuleType.CUSTOM
    description: str = ""
    required: bool = True

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("validation rule name must not be blank")
        problems = rule_query_violations(self.query)
        if problems:
            raise ValidationError(
                f"validation rule '{self.name}' must be a read-only SELECT query",
                violations=[f"rule '{self.name}': {p}" for p in problems],
            )
        if self.expected_result is not None and not isinstance(self.expected_result, str):
            object.__setattr__(self, "expected_result", str(self.expected_result))

    def is_result_valid(self, actual: Any) -> bool:
        if self.expected_result is None:
            return True
        if actual is None:
            return False
        return str(actual).strip() == self.expected_result.strip()

    # ------------------------------------------------------------------ #
    # Factories
    # ------------------------------------------------------------------ #

    @classmethod
    def record_count(cls, name: str, table: str, expected_count: int) -> ValidationRule:
        return cls(
            name=name,
            query=f"SELECT COUNT(*) FROM {table}",
            expected_result=str(expected_count),
            rule_type=RuleType.RECORD_COUNT,
            description=f"{table} holds exactly {expected_count} records",
        )

    @classmethod
    def data_integrity(cls, name: str, table: str, condition: str) -> ValidationRule:
        """No row of *table* may match *condition*."""
        return cls(
            name=name,
            query=f"SELECT COUNT(*) FROM {table} WHERE {condition}",
            expected_result="0",
            rule_type=RuleType.DATA_INTEGRITY,
            description=f"no rows of {table} match {condition}",
        )

    @classmethod
    def uniqueness(cls, name: str, table: str, column: str) -> ValidationRule:
        return cls(
            name=name,
            query=(
                f"SELECT COUNT(*) FROM (SELECT {column} FROM {table} "
                f"GROUP BY {column} HAVING COUNT(*) > 1)"
            ),
            expected_result="0",
            rule_type=RuleType.UNIQUENESS,
            description=f"{table}.{column} is unique",
        )

    @classmethod
    def referential_integrity(
        cls,
        name: str,
        child_table: str,
        child_column: str,
        parent_table: str,
        parent_column: str,
    ) -> ValidationRule:
        return cls(
            name=name,
            query=(
                f"SELECT COUNT(*) FROM {child_table} c "
                f"LEFT JOIN {parent_table} p ON c.{child_column} = p.{parent_column} "
                f"WHERE c.{child_column} IS NOT NULL AND p.{parent_column} IS NULL"
            ),
            expected_result="0",
            rule_type=RuleType.REFERENTIAL_INTEGRITY,
            description=(
                f"every {child_table}.{child_column} references {parent_table}.{parent_column}"
            ),
        )

    @classmethod
    def custom(
        cls, name: str, query: str, expected_result: str | None = None, description: str = ""
    ) -> ValidationRule:
        return cls(
            name=name,
            query=query,
            expected_result=expected_result,
            rule_type=RuleType.CUSTOM,
            description=description,
        )

    # ------------------------------------------------------------------ #
    # Serialisation
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "query": self.query,
            "expected_result": self.expected_result,
            "rule_type": self.rule_type.value,
            "description": self.description,
            "required": self.required,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationRule:
        expected = data.get("expected_result")
        raw_type = data.get("rule_type", RuleType.CUSTOM.value)
        try:
            rule_type = RuleType(raw_type)
        except ValueError as exc:
            raise ValidationError(f"unknown rule_type '{raw_type}'", cause=exc) from exc
        return cls(
            name=data.get("name", ""),
            query=data.get("query", ""),
            expected_result=None if expected is None else str(expected),
            rule_type=rule_type,
            description=data.get("description", ""),
            required=bool(data.get("required", True)),
        )
