"""Rule configuration parsing.

Rules arrive either as structured fields or as a legacy configuration string
in one of several historical formats. Each string is parsed exactly once, when
its campaign is activated, into one of the variants below; the normalized
fields are then written back onto the GiveAwayRule row.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, time, timezone as dt_timezone
from typing import Any, ClassVar, Union

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .exceptions import PersistentValidationError
from .models import GiveAwayRule

_IDENTIFIER = re.compile(r"^[A-Za-z0-9_.-]+$")
_LEGACY_KEYS = {"action", "min", "from", "to", "window"}


@dataclass(frozen=True)
class RuleWindow:
    start: datetime | None = None
    end: datetime | None = None
    all_time: bool = False

    def validate(self) -> "RuleWindow":
        if self.all_time:
            return self
        if self.start is None or self.end is None:
            raise PersistentValidationError("Rule window needs both a start and an end")
        if self.start >= self.end:
            raise PersistentValidationError("Rule window start must be before its end")
        return self


@dataclass(frozen=True)
class StructuredRule:
    rule_format: ClassVar[str] = GiveAwayRule.RuleFormat.STRUCTURED
    action_id: str
    minimum_count: int
    window: RuleWindow


@dataclass(frozen=True)
class LegacyKeywordRule:
    rule_format: ClassVar[str] = GiveAwayRule.RuleFormat.LEGACY_KEYWORD
    action_id: str
    minimum_count: int
    window: RuleWindow


@dataclass(frozen=True)
class CustomObjectiveRule:
    rule_format: ClassVar[str] = GiveAwayRule.RuleFormat.CUSTOM_OBJECTIVE
    objective: str
    minimum_count: int
    window: RuleWindow

    @property
    def action_id(self) -> str:
        return f"custom.{self.objective}"


@dataclass(frozen=True)
class DirectObjectiveId:
    rule_format: ClassVar[str] = GiveAwayRule.RuleFormat.DIRECT_OBJECTIVE_ID
    objective_id: str
    window: RuleWindow
    minimum_count: int = 1

    @property
    def action_id(self) -> str:
        return self.objective_id


ParsedRule = Union[StructuredRule, LegacyKeywordRule, CustomObjectiveRule, DirectObjectiveId]


def _parse_moment(value: Any, field: str, end_of_day: bool = False) -> datetime:
    text = str(value).strip()
    try:
        # Bare dates first, parse_datetime would read them as midnight.
        day = parse_date(text)
        moment = datetime.combine(day, time.max if end_of_day else time.min) if day else parse_datetime(text)
    except ValueError:
        moment = None
    if moment is None:
        raise PersistentValidationError(f"{field} must be an ISO-8601 date or datetime, got {text!r}")
    if timezone.is_naive(moment):
        return timezone.make_aware(moment, timezone=dt_timezone.utc)
    return moment.astimezone(dt_timezone.utc)


def _parse_count(value: Any, field: str) -> int:
    try:
        count = int(str(value).strip())
    except ValueError as exc:
        raise PersistentValidationError(f"{field} must be an integer, got {value!r}") from exc
    if count < 1:
        raise PersistentValidationError(f"{field} must be at least 1")
    return count


def _parse_structured(raw: str, default_window: RuleWindow) -> StructuredRule:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PersistentValidationError(f"Rule configuration is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise PersistentValidationError("Rule configuration must be a JSON object")
    action_id = str(payload.get("action_id") or "").strip()
    if not action_id:
        raise PersistentValidationError("action_id is required")
    if payload.get("all_time"):
        window = RuleWindow(all_time=True)
    elif "start" in payload or "end" in payload:
        window = RuleWindow(
            start=_parse_moment(payload.get("start"), "start") if payload.get("start") else None,
            end=_parse_moment(payload.get("end"), "end", end_of_day=True) if payload.get("end") else None,
        )
    else:
        window = default_window
    return StructuredRule(
        action_id=action_id,
        minimum_count=_parse_count(payload.get("minimum_count", 1), "minimum_count"),
        window=window.validate(),
    )


def _parse_legacy(raw: str, default_window: RuleWindow) -> LegacyKeywordRule:
    values: dict[str, str] = {}
    for chunk in filter(None, (part.strip() for part in raw.split(";"))):
        key, sep, value = chunk.partition("=")
        key = key.strip().lower()
        if not sep or key not in _LEGACY_KEYS:
            raise PersistentValidationError(f"Unknown rule setting {chunk!r}")
        values[key] = value.strip()
    action_id = values.get("action", "")
    if not action_id:
        raise PersistentValidationError("Legacy rule is missing action=")
    if values.get("window", "").lower() == "all":
        window = RuleWindow(all_time=True)
    elif "from" in values or "to" in values:
        window = RuleWindow(
            start=_parse_moment(values["from"], "from") if values.get("from") else None,
            end=_parse_moment(values["to"], "to", end_of_day=True) if values.get("to") else None,
        )
    else:
        window = default_window
    return LegacyKeywordRule(
        action_id=action_id,
        minimum_count=_parse_count(values.get("min", 1), "min"),
        window=window.validate(),
    )


def _parse_custom(raw: str, default_window: RuleWindow) -> CustomObjectiveRule:
    parts = raw.split(":")
    if len(parts) not in (2, 3) or not _IDENTIFIER.match(parts[1]):
        raise PersistentValidationError(f"Malformed custom objective {raw!r}")
    minimum = _parse_count(parts[2], "minimum") if len(parts) == 3 else 1
    return CustomObjectiveRule(objective=parts[1], minimum_count=minimum, window=default_window.validate())


def parse_rule_config(raw: str, default_window: RuleWindow) -> ParsedRule:
    """Parse a legacy configuration string into its rule variant.

    ``default_window`` applies to formats that do not carry a window of their
    own (usually the campaign window).
    """
    text = (raw or "").strip()
    if not text:
        raise PersistentValidationError("Rule configuration is empty")
    if text.startswith("{"):
        return _parse_structured(text, default_window)
    if text.lower().startswith("custom:"):
        return _parse_custom(text, default_window)
    if "=" in text:
        return _parse_legacy(text, default_window)
    if _IDENTIFIER.match(text):
        return DirectObjectiveId(objective_id=text, window=default_window.validate())
    raise PersistentValidationError(f"Unrecognised rule configuration {text!r}")


def structured_from_fields(rule: GiveAwayRule, default_window: RuleWindow | None = None) -> StructuredRule:
    action_id = (rule.action_id or "").strip()
    if not action_id:
        raise PersistentValidationError("action_id is required")
    if rule.minimum_count < 1:
        raise PersistentValidationError("minimum_count must be at least 1")
    window = RuleWindow(start=rule.rule_start, end=rule.rule_end, all_time=rule.all_time)
    # No window at all means the campaign window, as for the string formats.
    if default_window is not None and not window.all_time and window.start is None and window.end is None:
        window = default_window
    return StructuredRule(action_id=action_id, minimum_count=rule.minimum_count, window=window.validate())


def normalize_rule(rule: GiveAwayRule, now: datetime | None = None) -> ParsedRule:
    """Parse ``rule`` once and persist the normalized fields.

    Raises PersistentValidationError for configurations that cannot be used.
    Already normalized rules are returned as structured rules without
    re-parsing.
    """
    if rule.quantity_per_gift < 1:
        raise PersistentValidationError("quantity_per_gift must be positive")
    if rule.is_normalized:
        return structured_from_fields(rule)

    campaign_window = RuleWindow(start=rule.campaign.start_date, end=rule.campaign.end_date)
    if rule.raw_config.strip():
        parsed = parse_rule_config(rule.raw_config, campaign_window)
    else:
        parsed = structured_from_fields(rule, campaign_window)

    rule.action_id = parsed.action_id
    rule.minimum_count = parsed.minimum_count
    rule.all_time = parsed.window.all_time
    rule.rule_start = None if parsed.window.all_time else parsed.window.start
    rule.rule_end = None if parsed.window.all_time else parsed.window.end
    rule.rule_format = parsed.rule_format
    rule.normalized_at = now or timezone.now()
    rule.config_error = ""
    rule.save()
    return parsed
