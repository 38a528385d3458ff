"""
core/validation.py
------------------
Field validation rules checked by ``Model.save()``.

Rules are small objects pairing a predicate with a message. A model lists
them per field in ``__validation__``::

    class User(Model):
        __validation__ = {
            "name": [required, string, min_(2)],
            "email": [required, email],
        }

A predicate that raises counts as a failed rule.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Mapping, Sequence

from core.errors import ValidationError

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class Rule:
    check: Callable[[Any], bool]
    message: str

    def passes(self, value: Any) -> bool:
        try:
            return bool(self.check(value))
        except Exception:
            return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _size(value: Any) -> Any:
    if _is_number(value):
        return value
    if isinstance(value, (str, list, tuple)):
        return len(value)
    return None


required = Rule(lambda v: v is not None and v != "", "This field is required")
string = Rule(lambda v: isinstance(v, str), "This field must be a string")
number = Rule(_is_number, "This field must be a number")
email = Rule(lambda v: isinstance(v, str) and bool(_EMAIL_RE.match(v)),
             "This field must be a valid email")


def min_(limit: float) -> Rule:
    """Numbers must be >= *limit*; strings and lists must have at least *limit* items."""
    return Rule(lambda v: _size(v) is not None and _size(v) >= limit,
                f"This field must be at least {limit}")


def max_(limit: float) -> Rule:
    """Numbers must be <= *limit*; strings and lists must have at most *limit* items."""
    return Rule(lambda v: _size(v) is not None and _size(v) <= limit,
                f"This field must be at most {limit}")


def validate(data: Mapping[str, Any], rules: Mapping[str, Sequence[Rule]]) -> None:
    """
    Check *data* against *rules*.

    Raises:
        ValidationError: With ``errors = {field: [messages]}`` for every
            field that failed at least one rule.
    """
    errors: dict[str, list[str]] = {}
    for field_name, field_rules in rules.items():
        value = data.get(field_name)
        messages = [rule.message for rule in field_rules if not rule.passes(value)]
        if messages:
            errors[field_name] = messages
    if errors:
        raise ValidationError(errors)
