"""
Step definitions: the immutable units of work inside a plan.

A step is one of four frozen dataclasses forming the tagged union
:data:`Step`.  Each variant carries only the fields its kind needs and
validates that combination on construction, so a ``CleanupStep`` without a
target table cannot exist.  Ordering (unique, non-negative ``order``) is a
plan-level concern and is enforced by :meth:`MigrationPlan.create`.

Manifesto:
    - **One variant per kind:** no nullable fields that only some kinds use
    - **Immutable:** execution state lives in :class:`StepRun`, not here
    - **Exhaustive dispatch:** consumers ``match`` on the variant type

Architecture:
    ::

        Step = DataMigrationStep | SchemaUpdateStep | ValidationStep | CleanupStep

        ┌────────────────────┬──────────┬──────────┬────────┬──────┐
        │ kind               │ source   │ target   │ script │ rule │
        ├────────────────────┼──────────┼──────────┼────────┼──────┤
        │ data_migration     │ required │ required │ req.   │  -   │
        │ schema_update      │    -     │ required │ req.   │  -   │
        │ validation         │    -     │    -     │   -    │ req. │
        │ cleanup            │    -     │ required │   -    │  -   │
        └────────────────────┴──────────┴──────────┴────────┴──────┘

Examples:
    >>> step = step_from_dict({
    ...     "name": "copy-users", "order": 1, "kind": "data_migration",
    ...     "source_table": "users", "target_table": "users_v2",
    ...     "script": "INSERT INTO users_v2 SELECT * FROM users",
    ... })
    >>> step.kind
    <StepKind.DATA_MIGRATION: 'data_migration'>

Tags:
    steps, tagged-union, immutable, migration-spine

Doc-Types:
    - API Reference
    - Data Model
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from migration_spine.core.errors import ValidationError
from migration_spine.domain.enums import StepKind
from migration_spine.domain.rules import ValidationRule

_QUOTES = ("'", '"')


def script_violations(script: str | None) -> list[str]:
    """Structural checks for a transformation script.

    A script is well-formed when it is non-blank, its quotes are closed and
    its parentheses balance outside of quoted literals.
    """
    if script is None or not script.strip():
        return ["script is empty"]
    depth = 0
    quote: str | None = None
    for ch in script:
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in _QUOTES:
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                return ["script has an unmatched ')'"]
    problems = []
    if quote:
        problems.append(f"script has an unterminated {quote} literal")
    if depth > 0:
        problems.append("script has an unmatched '('")
    return problems


def _blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


@dataclass(frozen=True, kw_only=True)
class _StepBase:
    name: str
    order: int
    description: str = ""

    kind: ClassVar[StepKind]

    def __post_init__(self) -> None:
        problems = []
        if _blank(self.name):
            problems.append("step name must not be blank")
        if isinstance(self.order, bool) or not isinstance(self.order, int):
            problems.append(f"step '{self.name}': order must be an integer")
        problems.extend(f"step '{self.name}': {p}" for p in self._field_violations())
        if problems:
            raise ValidationError(
                f"invalid {self.kind.value} step '{self.name}'", violations=problems
            )

    def _field_violations(self) -> list[str]:
        return []

    def referenced_tables(self) -> tuple[str, ...]:
        return ()

    def _base_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "order": self.order,
            "kind": self.kind.value,
            "description": self.description,
        }


@dataclass(frozen=True, kw_only=True)
class DataMigrationStep(_StepBase):
    """Copy/transform rows from ``source_table`` into ``target_table``."""

    source_table: str
    target_table: str
    script: str
    rollback_script: str | None = None

    kind: ClassVar[StepKind] = StepKind.DATA_MIGRATION

    def _field_violations(self) -> list[str]:
        problems = []
        if _blank(self.source_table):
            problems.append("source_table is required")
        if _blank(self.target_table):
            problems.append("target_table is required")
        if _blank(self.script):
            problems.append("script is required")
        return problems

    def referenced_tables(self) -> tuple[str, ...]:
        return (self.source_table, self.target_table)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._base_dict(),
            "source_table": self.source_table,
            "target_table": self.target_table,
            "script": self.script,
            "rollback_script": self.rollback_script,
        }


@dataclass(frozen=True, kw_only=True)
class SchemaUpdateStep(_StepBase):
    """Apply DDL to ``target_table``."""

    target_table: str
    script: str
    rollback_script: str | None = None

    kind: ClassVar[StepKind] = StepKind.SCHEMA_UPDATE

    def _field_violations(self) -> list[str]:
        problems = []
        if _blank(self.target_table):
            problems.append("target_table is required")
        if _blank(self.script):
            problems.append("script is required")
        return problems

    def referenced_tables(self) -> tuple[str, ...]:
        return (self.target_table,)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._base_dict(),
            "target_table": self.target_table,
            "script": self.script,
            "rollback_script": self.rollback_script,
        }


@dataclass(frozen=True, kw_only=True)
class ValidationStep(_StepBase):
    """Evaluate ``rule``; the step fails when the rule is not satisfied."""

    rule: ValidationRule

    kind: ClassVar[StepKind] = StepKind.VALIDATION

    def _field_violations(self) -> list[str]:
        if not isinstance(self.rule, ValidationRule):
            return ["validation rule is required"]
        return []

    def to_dict(self) -> dict[str, Any]:
        return {**self._base_dict(), "rule": self.rule.to_dict()}


@dataclass(frozen=True, kw_only=True)
class CleanupStep(_StepBase):
    """Purge every row of ``target_table``."""

    target_table: str

    kind: ClassVar[StepKind] = StepKind.CLEANUP

    def _field_violations(self) -> list[str]:
        if _blank(self.target_table):
            return ["target_table is required"]
        return []

    def referenced_tables(self) -> tuple[str, ...]:
        return (self.target_table,)

    def to_dict(self) -> dict[str, Any]:
        return {**self._base_dict(), "target_table": self.target_table}


type Step = DataMigrationStep | SchemaUpdateStep | ValidationStep | CleanupStep


def step_from_dict(data: dict[str, Any]) -> Step:
    """Build the right :data:`Step` variant from a definition mapping.

    Accepts ``transformation_script`` as an alias of ``script`` and either a
    nested ``rule`` mapping or a ``validation_rule`` mapping for validation
    steps.

    Raises:
        ValidationError: Unknown kind or a missing/invalid field.
    """
    if not isinstance(data, dict):
        raise ValidationError(f"step definition must be a mapping, got {type(data).__name__}")

    raw_kind = data.get("kind") or data.get("type")
    try:
        kind = StepKind(str(raw_kind).lower())
    except ValueError as exc:
        raise ValidationError(
            f"step '{data.get('name', '')}': unknown kind '{raw_kind}'", cause=exc
        ) from exc

    common: dict[str, Any] = {
        "name": data.get("name", ""),
        "order": data.get("order"),
        "description": data.get("description") or "",
    }
    script = data.get("script", data.get("transformation_script"))

    match kind:
        case StepKind.DATA_MIGRATION:
            return DataMigrationStep(
                **common,
                source_table=data.get("source_table", ""),
                target_table=data.get("target_table", ""),
                script=script or "",
                rollback_script=data.get("rollback_script"),
            )
        case StepKind.SCHEMA_UPDATE:
            return SchemaUpdateStep(
                **common,
                target_table=data.get("target_table", ""),
                script=script or "",
                rollback_script=data.get("rollback_script"),
            )
        case StepKind.VALIDATION:
            rule_data = data.get("rule", data.get("validation_rule"))
            if not isinstance(rule_data, dict):
                raise ValidationError(
                    f"step '{common['name']}': validation rule is required"
                )
            return ValidationStep(**common, rule=ValidationRule.from_dict(rule_data))
        case StepKind.CLEANUP:
            return CleanupStep(**common, target_table=data.get("target_table", ""))


__all__ = [
    "Step",
    "DataMigrationStep",
    "SchemaUpdateStep",
    "ValidationStep",
    "CleanupStep",
    "script_violations",
    "step_from_dict",
]
