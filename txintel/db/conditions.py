"""Normalization of stored rule conditions into typed conditions."""

import json
from decimal import Decimal, InvalidOperation

from txintel.db.models import (
    NumericCondition,
    NumericOperator,
    RuleCondition,
    TextCondition,
    TextOperator,
)

TEXT_OPERATORS = {op.value: op for op in TextOperator}
NUMERIC_OPERATORS = {op.value: op for op in NumericOperator}


def build_condition(
    field: str,
    operator: str,
    value: str,
    value_end: str | None = None,
) -> RuleCondition:
    """Build a typed condition, coercing numeric values once.

    Raises ValueError for an unknown operator or a non-numeric value on a
    numeric operator.
    """
    if operator in TEXT_OPERATORS:
        return TextCondition(field=field, operator=TEXT_OPERATORS[operator], value=str(value))
    if operator in NUMERIC_OPERATORS:
        return NumericCondition(
            field=field,
            operator=NUMERIC_OPERATORS[operator],
            value=_to_decimal(value),
            value_end=_to_decimal(value_end) if value_end not in (None, "") else None,
        )
    raise ValueError(f"Unknown rule operator: {operator!r}")


def normalize_conditions(
    conditions: str | list | None,
    field: str | None = None,
    operator: str | None = None,
    value: str | None = None,
    value_end: str | None = None,
) -> list[RuleCondition]:
    """Turn either stored shape of a rule into a list of typed conditions.

    ``conditions`` may be a JSON string, an already-decoded list, or empty.
    When it holds no conditions the legacy single ``field/operator/value``
    columns are used instead.
    """
    raw = json.loads(conditions) if isinstance(conditions, str) and conditions else conditions
    if isinstance(raw, list) and raw:
        return [_condition_from_dict(c) for c in raw]
    if field is None or operator is None:
        return []
    return [build_condition(field, operator, value or "", value_end)]


def _condition_from_dict(item) -> RuleCondition:
    if not isinstance(item, dict):
        raise ValueError(f"Rule condition is not an object: {item!r}")
    field = item.get("field", "")
    operator = item.get("operator", "")
    if not isinstance(field, str) or not isinstance(operator, str):
        raise ValueError(f"Rule condition field and operator must be text: {item!r}")
    return build_condition(field, operator, item.get("value", ""), item.get("value_end"))


def conditions_to_json(conditions: list[RuleCondition]) -> str:
    """Serialize typed conditions to the stored JSON list shape."""
    payload = []
    for cond in conditions:
        item = {"field": cond.field, "operator": cond.operator.value, "value": str(cond.value)}
        if isinstance(cond, NumericCondition) and cond.value_end is not None:
            item["value_end"] = str(cond.value_end)
        payload.append(item)
    return json.dumps(payload)


def _to_decimal(value) -> Decimal:
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Non-numeric rule value: {value!r}") from e
    if not number.is_finite():
        raise ValueError(f"Non-numeric rule value: {value!r}")
    return number
