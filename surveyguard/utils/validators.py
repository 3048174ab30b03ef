"""
Input validation helpers
"""
import re
from typing import Any, Dict, List

UID_PATTERN = re.compile(r'^[A-Za-z0-9_\-]{4,64}$')

BEHAVIOR_EVENT_TYPES = {
    'mousemove', 'keydown', 'click', 'scroll', 'wheel', 'focus', 'resize', 'copy', 'paste', 'cut',
}

MAX_EVENTS_PER_BATCH = 500


def validate_uid(uid: str) -> bool:
    return bool(uid) and bool(UID_PATTERN.match(uid))


def validate_behavior_events(events: Any) -> List[Dict[str, Any]]:
    """Keep well-formed behavior events from a client batch"""
    if not isinstance(events, list):
        return []
    valid = []
    for event in events[:MAX_EVENTS_PER_BATCH]:
        if isinstance(event, dict) and str(event.get('type', '')).lower() in BEHAVIOR_EVENT_TYPES:
            valid.append(event)
    return valid
