"""
Goal and funnel condition vocabulary.

Definitions are parsed once into typed condition objects; evaluation is a
pure predicate over a single event. Malformed or unknown conditions parse
to UnknownCondition and never match, so a bad definition can not break
ingestion.

Supported condition types:
- page_visit: exact / contains / regex against the pageview path
- event: custom event name, optionally a property comparison
- form_submit: optional form id
- scroll_depth: path glob + minimum percentage
- time_on_page: path glob + minimum engaged seconds
- click: selector match on custom "click" events
- revenue: minimum revenue
"""
import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, ValidationError

from beacon.core.exceptions import ValidationFailure
from beacon.core.logging import get_logger
from beacon.models.event import EventType

logger = get_logger(__name__)


def _field(event: Any, name: str) -> Any:
    """Read an event attribute from an ORM row, dataclass or plain dict."""
    if isinstance(event, Mapping):
        return event.get(name)
    return getattr(event, name, None)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _to_text(value: Any) -> Optional[str]:
    return None if value is None else _stringify(value)


Text = Annotated[Optional[str], BeforeValidator(_to_text)]


@lru_cache(maxsize=512)
def _compile(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern)
    except re.error:
        logger.warning("Invalid condition regex", pattern=pattern)
        return None


def match_text(mode: Optional[str], actual: str, expected: str) -> bool:
    """Compare with exact (default), contains or regex semantics."""
    if mode == "contains":
        return expected in actual
    if mode == "regex":
        compiled = _compile(expected)
        return bool(compiled and compiled.search(actual))
    return actual == expected


def match_path_glob(pattern: str, path: str) -> bool:
    """Full match where * stands for any run of characters."""
    if "*" not in pattern:
        return pattern == path
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    compiled = _compile(f"^{regex}$")
    return bool(compiled and compiled.match(path))


class BaseCondition(BaseModel):
    """Common behaviour for all condition types."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    type: str

    def matches(self, event: Any) -> bool:
        raise NotImplementedError


class PageVisitCondition(BaseCondition):
    type: Literal["page_visit"] = "page_visit"
    match: Text = None
    value: Text = None

    def matches(self, event: Any) -> bool:
        if _field(event, "event_type") != EventType.PAGEVIEW:
            return False
        return match_text(self.match, _field(event, "path") or "", self.value or "")


class EventCondition(BaseCondition):
    type: Literal["event"] = "event"
    event_name: Text = None
    property: Text = None
    operator: Text = None
    value: Text = None

    def matches(self, event: Any) -> bool:
        if _field(event, "event_type") != EventType.CUSTOM:
            return False
        if _field(event, "event_name") != self.event_name:
            return False
        if self.property and self.operator and self.value is not None:
            data = _field(event, "event_data") or {}
            actual = _stringify(data.get(self.property))
            mode = self.operator if self.operator != "equals" else "exact"
            return match_text(mode, actual, self.value)
        return True


class FormSubmitCondition(BaseCondition):
    type: Literal["form_submit"] = "form_submit"
    form_id: Text = None

    def matches(self, event: Any) -> bool:
        if _field(event, "event_type") != EventType.FORM_SUBMIT:
            return False
        if self.form_id and _field(event, "form_id") != self.form_id:
            return False
        return True


class ScrollDepthCondition(BaseCondition):
    type: Literal["scroll_depth"] = "scroll_depth"
    path: Text = None
    min_pct: float = 0

    def matches(self, event: Any) -> bool:
        depth = _field(event, "scroll_depth_pct")
        if not depth:
            return False
        if self.path and not match_path_glob(self.path, _field(event, "path") or ""):
            return False
        return depth >= self.min_pct


class TimeOnPageCondition(BaseCondition):
    type: Literal["time_on_page"] = "time_on_page"
    path: Text = None
    min_seconds: float = 0

    @property
    def min_ms(self) -> float:
        return self.min_seconds * 1000

    def matches(self, event: Any) -> bool:
        engaged = _field(event, "engaged_time_ms")
        if not engaged:
            return False
        if self.path and not match_path_glob(self.path, _field(event, "path") or ""):
            return False
        return engaged >= self.min_ms


class ClickCondition(BaseCondition):
    type: Literal["click"] = "click"
    match: Text = None
    value: Text = None

    def matches(self, event: Any) -> bool:
        if _field(event, "event_type") != EventType.CUSTOM or _field(event, "event_name") != "click":
            return False
        if not self.value:
            return True
        data = _field(event, "event_data") or {}
        return match_text(self.match, _stringify(data.get("selector")), self.value)


class RevenueCondition(BaseCondition):
    type: Literal["revenue"] = "revenue"
    value: Text = None

    @property
    def min_revenue(self) -> Optional[float]:
        try:
            return float(self.value or 0)
        except ValueError:
            return None

    def matches(self, event: Any) -> bool:
        revenue = _field(event, "revenue")
        threshold = self.min_revenue
        if not revenue or threshold is None:
            return False
        return revenue >= threshold


class UnknownCondition(BaseCondition):
    """Placeholder for a condition that failed to parse. Never matches."""

    type: str = "unknown"
    reason: str = ""

    def matches(self, event: Any) -> bool:
        return False


Condition = Union[
    PageVisitCondition,
    EventCondition,
    FormSubmitCondition,
    ScrollDepthCondition,
    TimeOnPageCondition,
    ClickCondition,
    RevenueCondition,
    UnknownCondition,
]

CONDITION_TYPES: dict[str, type[BaseCondition]] = {
    "page_visit": PageVisitCondition,
    "event": EventCondition,
    "form_submit": FormSubmitCondition,
    "scroll_depth": ScrollDepthCondition,
    "time_on_page": TimeOnPageCondition,
    "click": ClickCondition,
    "revenue": RevenueCondition,
}


def parse_condition(raw: Any, *, strict: bool = False) -> Condition:
    """
    Build a typed condition from its stored JSON form.

    With strict=True a malformed definition raises ValidationFailure
    (definition-time checks); otherwise it becomes an UnknownCondition.
    """
    if isinstance(raw, BaseCondition):
        return raw

    condition_type = raw.get("type") if isinstance(raw, Mapping) else None
    model = CONDITION_TYPES.get(condition_type) if isinstance(condition_type, str) else None

    if model is None:
        reason = f"unknown condition type: {condition_type!r}"
    else:
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            reason = str(e)

    if strict:
        raise ValidationFailure("Invalid condition", condition=raw, reason=reason)
    logger.warning("Condition will never match", condition_type=condition_type, reason=reason)
    return UnknownCondition(type=str(condition_type or "unknown"), reason=reason)


def matches(condition: Condition, event: Any) -> bool:
    """Does a single event satisfy the condition. Never raises."""
    try:
        return bool(condition.matches(event))
    except (TypeError, ValueError) as e:
        logger.debug("Condition evaluation failed", condition_type=condition.type, error=str(e))
        return False


def any_matches(conditions: Sequence[Condition], event: Any) -> bool:
    return any(matches(c, event) for c in conditions)


def all_matched_somewhere(conditions: Sequence[Condition], events: Sequence[Any]) -> bool:
    """Every condition is satisfied by at least one of the events."""
    if not conditions:
        return False
    return all(any(matches(c, e) for e in events) for c in conditions)


def matched_in_sequence(conditions: Sequence[Condition], events: Sequence[Any]) -> bool:
    """
    The conditions are satisfied in declared order by events in
    chronological order; unrelated events in between are skipped.
    """
    if not conditions:
        return False
    index = 0
    for event in events:
        if index < len(conditions) and matches(conditions[index], event):
            index += 1
    return index >= len(conditions)


class Operator:
    ANY = "ANY"  # array form
    AND = "AND"
    OR = "OR"
    SEQUENCE = "SEQUENCE"


HISTORY_OPERATORS = frozenset({Operator.AND, Operator.SEQUENCE})
KNOWN_OPERATORS = frozenset({Operator.AND, Operator.OR, Operator.SEQUENCE})


@dataclass(frozen=True)
class ConditionSet:
    """A goal's full condition definition with its combination rule."""

    operator: str
    conditions: tuple[Condition, ...]

    @property
    def needs_history(self) -> bool:
        return self.operator in HISTORY_OPERATORS

    def evaluate(self, event: Any, history: Optional[Sequence[Any]] = None) -> bool:
        """
        Evaluate against the current event, or for AND / SEQUENCE against
        the session history (oldest first, current event included).
        """
        if self.operator in (Operator.ANY, Operator.OR):
            return any_matches(self.conditions, event)
        events = list(history) if history is not None else [event]
        if self.operator == Operator.AND:
            return all_matched_somewhere(self.conditions, events)
        if self.operator == Operator.SEQUENCE:
            return matched_in_sequence(self.conditions, events)
        return False


def parse_condition_set(raw: Any, *, strict: bool = False) -> ConditionSet:
    """
    Parse the array form or the {operator, conditions} compound form.

    With strict=True an unknown operator, an unrecognised shape or any
    malformed condition raises ValidationFailure.
    """
    if isinstance(raw, list):
        return ConditionSet(Operator.ANY, tuple(parse_condition(c, strict=strict) for c in raw))

    if isinstance(raw, Mapping):
        operator = str(raw.get("operator") or "").upper()
        items = raw.get("conditions")
        if isinstance(items, list):
            if strict and operator not in KNOWN_OPERATORS:
                raise ValidationFailure("Unknown operator", operator=operator)
            return ConditionSet(
                operator, tuple(parse_condition(c, strict=strict) for c in items)
            )

    if strict:
        raise ValidationFailure("Unrecognised conditions shape", shape=type(raw).__name__)
    logger.warning("Unrecognised conditions shape", shape=type(raw).__name__)
    return ConditionSet(Operator.ANY, ())


@lru_cache(maxsize=1024)
def _parse_condition_set_json(fingerprint: str) -> ConditionSet:
    raw = json.loads(fingerprint)
    try:
        return parse_condition_set(raw, strict=True)
    except ValidationFailure as e:
        # Fail closed: the broken parts never match
        logger.warning("Invalid condition definition", error=e.message, **e.context)
        return parse_condition_set(raw)


def load_condition_set(raw: Any) -> ConditionSet:
    """
    parse_condition_set with memoization on the definition's content, so
    a stored definition is validated once rather than on every event.
    """
    try:
        fingerprint = json.dumps(raw, sort_keys=True)
    except (TypeError, ValueError):
        return parse_condition_set(raw)
    return _parse_condition_set_json(fingerprint)
