"""
Plan definitions from mappings and YAML documents.

A plan definition is the transport-agnostic input of the create operation:
the REST body, the CLI's YAML file and tests all reduce to the same mapping::

    name: users-v2
    description: split users into users_v2
    strategy: incremental
    steps:
      - name: create-table
        order: 0
        kind: schema_update
        target_table: users_v2
        script: CREATE TABLE users_v2 (id INTEGER PRIMARY KEY, email TEXT)
        rollback_script: DROP TABLE users_v2
      - name: check-count
        order: 1
        kind: validation
        rule:
          name: users_v2_empty
          rule_type: record_count
          query: SELECT COUNT(*) FROM users_v2
          expected_result: "0"

Step problems are collected across every step so one ``ValidationError``
reports the whole definition.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from migration_spine.core.errors import ValidationError
from migration_spine.domain.enums import Strategy
from migration_spine.domain.plan import MigrationPlan, plan_violations
from migration_spine.domain.steps import Step, step_from_dict


@dataclass(frozen=True)
class PlanDefinition:
    """Validated input for plan creation."""

    name: str
    description: str
    strategy: Strategy
    steps: tuple[Step, ...]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlanDefinition:
        if not isinstance(data, dict):
            raise ValidationError("plan definition must be a mapping")

        problems: list[str] = []
        raw_strategy = data.get("strategy") or Strategy.BIG_BANG.value
        try:
            strategy = Strategy(str(raw_strategy).lower())
        except ValueError:
            problems.append(f"unknown strategy '{raw_strategy}'")
            strategy = Strategy.BIG_BANG

        raw_steps = data.get("steps") or []
        if not isinstance(raw_steps, list):
            problems.append("steps must be a list")
            raw_steps = []

        steps: list[Step] = []
        for raw in raw_steps:
            try:
                steps.append(step_from_dict(raw))
            except ValidationError as exc:
                problems.extend(exc.violations)

        name = data.get("name") or ""
        problems.extend(plan_violations(str(name), steps))

        if problems:
            raise ValidationError(
                f"plan '{name}' is invalid: {'; '.join(problems)}", violations=problems
            )
        return cls(
            name=str(name).strip(),
            description=str(data.get("description") or ""),
            strategy=strategy,
            steps=tuple(steps),
        )

    def to_plan(self) -> MigrationPlan:
        return MigrationPlan.create(self.name, self.description, self.strategy, self.steps)


def parse_plan_yaml(text: str) -> PlanDefinition:
    """Parse a YAML plan document."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValidationError(f"plan document is not valid YAML: {exc}", cause=exc) from exc
    return PlanDefinition.from_dict(data)


def load_plan_file(path: str | Path) -> PlanDefinition:
    """Read and parse a YAML plan file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ValidationError(f"cannot read plan file '{path}': {exc}", cause=exc) from exc
    return parse_plan_yaml(text)
