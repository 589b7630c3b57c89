import json
import re
from typing import Any, Tuple

_RANGE = re.compile(r"^(\d+)\s*-\s*(\d+)$")


def _phase(token: Any) -> int:
    if isinstance(token, bool):
        raise ValueError(f"invalid phase: {token!r}")
    if isinstance(token, float) and token.is_integer():
        token = int(token)
    if isinstance(token, str) and token.strip().isdigit():
        token = int(token.strip())
    if not isinstance(token, int) or token < 1:
        raise ValueError(f"invalid phase: {token!r}")
    return token


def parse_phase_expression(value: Any) -> Tuple[int, ...]:
    """
    Parse a phase list or range expression into sorted unique phases.

    Accepts lists/tuples of phases, JSON arrays ("[1, 3]"), comma lists
    ("1,3") and inclusive ranges ("1-3", "1-2,5"). Empty input means no
    preference. Raises ValueError for anything else.
    """
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(sorted({_phase(v) for v in value}))
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (_phase(value),)
    if not isinstance(value, str):
        raise ValueError(f"unsupported phase expression: {value!r}")

    text = value.strip()
    if not text:
        return ()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"invalid phase list: {text}") from exc
        if not isinstance(parsed, list):
            raise ValueError(f"invalid phase list: {text}")
        return tuple(sorted({_phase(v) for v in parsed}))

    phases = set()
    for token in text.split(","):
        token = token.strip()
        if not token:
            continue
        match = _RANGE.match(token)
        if match:
            start, end = int(match.group(1)), int(match.group(2))
            if start < 1 or start > end:
                raise ValueError(f"invalid phase range: {token}")
            phases.update(range(start, end + 1))
        else:
            phases.add(_phase(token))
    return tuple(sorted(phases))
