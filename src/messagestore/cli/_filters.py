"""CLI parsers for NAME=VALUE options."""

from __future__ import annotations

import json
from typing import Any


def _parse_value(raw: str) -> Any:
    """Read VALUE as JSON when it parses, else as a plain string."""
    try:
        value = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(value, (str, int, float, bool, list)):
        return value
    return raw


def _parse_pair(pair: str) -> tuple[str, Any]:
    name, sep, raw = pair.partition("=")
    if not sep or not name:
        raise ValueError(f"Expected NAME=VALUE, got '{pair}'")
    return name, _parse_value(raw)


def parse_pairs(pairs: list[str] | None) -> dict[str, Any]:
    """Parse repeated ``NAME=VALUE`` options into a mapping."""
    return dict(_parse_pair(pair) for pair in pairs or [])


def parse_cli_filters(pairs: list[str] | None, *, any_of: bool = False) -> list[dict[str, Any]]:
    """Parse ``--filter NAME=VALUE`` options into filter clauses.

    By default every pair goes into one clause (AND). With ``any_of`` each pair
    becomes its own clause (OR), so one name may be given several values.
    """
    if any_of:
        return [dict([_parse_pair(pair)]) for pair in pairs or []]
    parsed = parse_pairs(pairs)
    if not parsed:
        return []
    return [parsed]
