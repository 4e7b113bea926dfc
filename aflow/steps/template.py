"""Placeholder substitution over strings and nested documents."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")

_MISSING = object()


def lookup_path(context: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path such as ``user.name`` against ``context``."""
    current: Any = context
    for key in path.split("."):
        if isinstance(current, Mapping):
            if key not in current:
                return _MISSING
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.isdigit():
            index = int(key)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def _render(value: Any) -> str:
    if isinstance(value, (Mapping, list, tuple, bool)):
        return json.dumps(value, default=dict)
    return str(value)


def template_string(template: str, context: Mapping[str, Any]) -> str:
    """Replace ``{{key}}`` placeholders with values from ``context``.

    Placeholders that do not resolve, or resolve to ``None``, are left as-is.
    """

    def substitute(match: re.Match[str]) -> str:
        value = lookup_path(context, match.group(1).strip())
        if value is _MISSING or value is None:
            return match.group(0)
        return _render(value)

    return PLACEHOLDER.sub(substitute, template)


def template_value(value: Any, context: Mapping[str, Any]) -> Any:
    """Walk a JSON-shaped value, templating every string leaf with placeholders."""
    if isinstance(value, str):
        return template_string(value, context) if PLACEHOLDER.search(value) else value
    if isinstance(value, Mapping):
        return {key: template_value(item, context) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [template_value(item, context) for item in value]
    return value
