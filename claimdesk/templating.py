"""
Merge-field rendering for automation messages.

Supports ``{claim.<field>}``, ``{trigger.<field>}`` and the inspection fields
``{inspection.date}``, ``{inspection.time}``, ``{inspection.type}``,
``{inspection.inspector}`` and ``{inspection.notes}``.
"""

import re
from typing import Any, Dict, Optional

CLAIM_FIELD = re.compile(r"\{claim\.(\w+)\}")
TRIGGER_FIELD = re.compile(r"\{trigger\.(\w+)\}")
INSPECTION_FIELD = re.compile(r"\{inspection\.(date|time|type|inspector|notes)\}")
TIME_24H = re.compile(r"^\s*(\d{1,2}):(\d{2})")

# merge field -> (trigger_data key, inspection row key)
INSPECTION_SOURCES = {
    "date": "inspection_date",
    "time": "inspection_time",
    "type": "inspection_type",
    "inspector": "inspector_name",
    "notes": "notes",
}


def format_time_12h(time_24h: Optional[str]) -> str:
    """Format ``"14:05"`` as ``"2:05 PM"``. Unparseable input is returned as is."""
    if not time_24h:
        return ""
    match = TIME_24H.match(str(time_24h))
    if not match or int(match.group(1)) > 23:
        return str(time_24h)
    hour, minutes = int(match.group(1)), match.group(2)
    suffix = "PM" if hour >= 12 else "AM"
    return f"{hour % 12 or 12}:{minutes} {suffix}"


def _text(value: Any) -> str:
    # Falsy merge values render as nothing, including 0 and False
    return str(value) if value else ""


def _inspection_value(field: str, trigger_data: Dict[str, Any], inspection: Optional[Dict[str, Any]]) -> str:
    key = INSPECTION_SOURCES[field]
    value = trigger_data.get(key) or (inspection or {}).get(key)
    if field == "time":
        return format_time_12h(value)
    return _text(value)


def render_template(
    template: Optional[str],
    claim: Optional[Dict[str, Any]],
    trigger_data: Optional[Dict[str, Any]],
    inspection: Optional[Dict[str, Any]] = None
) -> str:
    """
    Replace merge fields in a message template.

    Inspection fields come from the trigger data first and fall back to the
    given inspection row. Unknown or empty fields render as empty strings.
    """
    if not template:
        return ""

    claim = claim or {}
    trigger_data = trigger_data or {}

    result = CLAIM_FIELD.sub(lambda match: _text(claim.get(match.group(1))), template)
    result = TRIGGER_FIELD.sub(lambda match: _text(trigger_data.get(match.group(1))), result)
    result = INSPECTION_FIELD.sub(
        lambda match: _inspection_value(match.group(1), trigger_data, inspection),
        result
    )
    return result
