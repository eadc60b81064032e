"""RFC 5545 recurrence-rule helpers.

A rule line such as ``RRULE:FREQ=WEEKLY;BYDAY=MO,WE;COUNT=10`` is handled as
an ordered ``{field: value}`` map. Mutations go through the map and are
serialized back, never through string surgery.
"""

from __future__ import annotations

import datetime as dt
from typing import Iterable

RRULE_PREFIX = "RRULE:"

VALID_FREQUENCIES = ("DAILY", "WEEKLY", "MONTHLY", "YEARLY")
VALID_DAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
_PASSTHROUGH_PREFIXES = ("EXDATE", "RDATE", "EXRULE")

_DAY_NAMES = {
    "MO": "Monday", "TU": "Tuesday", "WE": "Wednesday", "TH": "Thursday",
    "FR": "Friday", "SA": "Saturday", "SU": "Sunday",
}
_FREQ_UNITS = {"DAILY": "day", "WEEKLY": "week", "MONTHLY": "month", "YEARLY": "year"}


def is_rrule_line(line: str) -> bool:
    """True for ``RRULE:`` lines; EXDATE/RDATE lines are left alone."""
    return line.strip().upper().startswith(RRULE_PREFIX)


def is_rule_line(line: str) -> bool:
    """True for RRULE lines, prefixed or bare (``FREQ=...``)."""
    return is_rrule_line(line) or line.strip().upper().startswith("FREQ=")


def parse_rrule(rule: str) -> dict[str, str]:
    """Parse a rule (with or without the ``RRULE:`` prefix) into an ordered map."""
    body = rule.strip()
    if body.upper().startswith(RRULE_PREFIX):
        body = body[len(RRULE_PREFIX):]
    fields: dict[str, str] = {}
    for part in body.split(";"):
        if not part.strip():
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise ValueError(f"Malformed RRULE component: {part!r}")
        fields[key.strip().upper()] = value.strip()
    return fields


def serialize_rrule(fields: dict[str, str], prefix: bool = True) -> str:
    """Inverse of :func:`parse_rrule`."""
    body = ";".join(f"{key}={value}" for key, value in fields.items())
    return f"{RRULE_PREFIX}{body}" if prefix else body


def format_until(moment: dt.datetime) -> str:
    """UNTIL stamp in basic UTC form, e.g. ``20260114T235959Z``."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(dt.UTC).replace(tzinfo=None)
    return moment.strftime("%Y%m%dT%H%M%SZ")


def split_until(occurrence_start: dt.datetime | dt.date) -> str:
    """UNTIL for a series that must end the day before ``occurrence_start``.

    The day ends at 23:59:59 in the occurrence's own zone; aware values are
    then converted to UTC. Naive values and dates are taken as UTC.
    """
    if isinstance(occurrence_start, dt.datetime):
        day, tz = occurrence_start.date(), occurrence_start.tzinfo
    else:
        day, tz = occurrence_start, None
    previous = day - dt.timedelta(days=1)
    return format_until(dt.datetime.combine(previous, dt.time(23, 59, 59), tzinfo=tz))


def set_until(rule: str, until: str) -> str:
    """Bound a rule with UNTIL. COUNT is dropped since the two are exclusive."""
    fields = parse_rrule(rule)
    fields.pop("COUNT", None)
    fields["UNTIL"] = until
    return serialize_rrule(fields, prefix=is_rrule_line(rule))


def truncate_recurrence(recurrence: Iterable[str], until: str) -> list[str]:
    """Apply :func:`set_until` to every RRULE line of a recurrence list."""
    return [set_until(line, until) if is_rule_line(line) else line for line in recurrence]


def unbounded_recurrence(recurrence: Iterable[str]) -> list[str]:
    """Copy of a recurrence list with UNTIL and COUNT removed from RRULE lines."""
    result = []
    for line in recurrence:
        if is_rule_line(line):
            fields = parse_rrule(line)
            fields.pop("UNTIL", None)
            fields.pop("COUNT", None)
            line = serialize_rrule(fields, prefix=is_rrule_line(line))
        result.append(line)
    return result


def validate_recurrence_rules(rules: list[str]) -> list[str]:
    """Return human-readable problems with ``rules``; empty when valid."""
    errors: list[str] = []
    if not rules:
        return ["At least one recurrence rule is required"]

    for rule in rules:
        if rule.strip().upper().startswith(_PASSTHROUGH_PREFIXES):
            continue
        if not is_rule_line(rule):
            errors.append(f"Unrecognised recurrence line: {rule!r}")
            continue
        try:
            fields = parse_rrule(rule)
        except ValueError as exc:
            errors.append(str(exc))
            continue

        freq = fields.get("FREQ", "").upper()
        if not freq:
            errors.append("FREQ is required in RRULE")
        elif freq not in VALID_FREQUENCIES:
            errors.append(f"Invalid FREQ value: {freq!r}. Must be one of: {', '.join(VALID_FREQUENCIES)}")

        if "COUNT" in fields and "UNTIL" in fields:
            errors.append("COUNT and UNTIL cannot be used together")

        for key in ("COUNT", "INTERVAL"):
            if key in fields and not (fields[key].isdigit() and int(fields[key]) > 0):
                errors.append(f"{key} must be a positive integer, got {fields[key]!r}")

        if "BYDAY" in fields:
            for code in fields["BYDAY"].split(","):
                # Allow ordinal prefixes like 1MO or -1FR
                day = code.strip().lstrip("+-0123456789").upper()
                if day not in VALID_DAY_CODES:
                    errors.append(f"Invalid BYDAY value: {code!r}")
    return errors


def describe_recurrence(rules: list[str]) -> str:
    """Short English summary of the first RRULE, e.g. 'Every 2 weeks on Monday'."""
    rule = next((line for line in rules if is_rule_line(line)), "")
    if not rule:
        return ""
    fields = parse_rrule(rule)
    unit = _FREQ_UNITS.get(fields.get("FREQ", "").upper(), "period")
    interval = int(fields.get("INTERVAL", "1") or 1)
    text = f"Every {unit}" if interval == 1 else f"Every {interval} {unit}s"

    if "BYDAY" in fields:
        days = [_DAY_NAMES.get(code.strip().lstrip("+-0123456789").upper(), code) for code in fields["BYDAY"].split(",")]
        text += f" on {', '.join(days)}"
    if "BYMONTHDAY" in fields:
        text += f" on day {fields['BYMONTHDAY']}"
    if "COUNT" in fields:
        text += f", {fields['COUNT']} times"
    if "UNTIL" in fields:
        until = fields["UNTIL"]
        text += f", until {until[:4]}-{until[4:6]}-{until[6:8]}"
    return text
