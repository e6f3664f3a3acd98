from typing import Any, Dict, List, Optional

_MISSING = object()


class InvalidMatch(ValueError):
    pass


def parse_match(expressions: Optional[List[str]]) -> Dict[str, str]:
    """Turn ``["user.id=7", "kind=order"]`` into ``{"user.id": "7", "kind": "order"}``."""
    criteria: Dict[str, str] = {}
    for expr in expressions or []:
        field, sep, value = expr.partition("=")
        field = field.strip()
        if not sep or not field:
            raise InvalidMatch(f"expected field=value, got {expr!r}")
        criteria[field] = value.strip()
    return criteria


def _lookup(payload: Any, path: str):
    current = payload
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def _as_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def payload_matches(payload, args, context, info) -> bool:
    """Filter predicate: every ``args['match']`` field must equal the given text."""
    criteria = (args or {}).get("match") or {}
    for path, expected in criteria.items():
        value = _lookup(payload, path)
        if value is _MISSING or _as_text(value) != expected:
            return False
    return True
