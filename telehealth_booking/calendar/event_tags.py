"""
Metadata tags embedded in calendar event descriptions.

A small KEY=value block is appended after the human-readable text so events
can be recognised later in the calendar UI. Parsing is advisory only;
nothing depends on every tag surviving a round trip through the provider.
"""
import re
from typing import Dict, Optional

EVENT_TYPE_TAG = "TELEHEALTH_CONSULT"
TAG_SEPARATOR = "---"

_TAG_LINE = re.compile(r"^(TYPE|PATIENT|PHONE|USER_ID|Name|Type)[:=]\s*(.+)", re.IGNORECASE)


def build_tagged_description(
    description: Optional[str] = None,
    patient_name: Optional[str] = None,
    phone: Optional[str] = None,
    user_id: Optional[str] = None,
    event_type: str = EVENT_TYPE_TAG
) -> str:
    tags = [f"TYPE={event_type}"]
    if patient_name:
        tags.append(f"PATIENT={patient_name}")
    if phone:
        tags.append(f"PHONE={phone}")
    if user_id:
        tags.append(f"USER_ID={user_id}")

    tag_block = "\n".join(tags)
    return f"{description or ''}\n\n{TAG_SEPARATOR}\n{tag_block}\n"


def parse_event_tags(description: Optional[str]) -> Dict[str, str]:
    """Extract tags as lowercase keys, e.g. {'type': ..., 'patient': ..., 'user_id': ...}."""
    tags: Dict[str, str] = {}
    if not description:
        return tags

    for line in description.splitlines():
        match = _TAG_LINE.match(line.strip())
        if match:
            key = re.sub(r"[^a-z0-9_]", "", match.group(1).lower())
            tags[key] = match.group(2).strip()
    return tags
