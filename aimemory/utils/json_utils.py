"""
JSON utilities for list and mapping columns stored as text.
"""

import json
from typing import Any, Dict, List, Optional


def dumps_compact(value: Any) -> str:
    """Serialize to JSON keeping non-ASCII text readable."""
    return json.dumps(value, ensure_ascii=False)


def loads_list(raw: Optional[str]) -> List[Any]:
    """Decode a JSON array column, returning an empty list for bad or missing data.

    Args:
        raw: Stored JSON text

    Returns:
        Decoded list
    """
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return value if isinstance(value, list) else []


def loads_dict(raw: Optional[str]) -> Dict[str, Any]:
    """Decode a JSON object column, returning an empty dict for bad or missing data."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}
