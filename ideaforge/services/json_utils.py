import json
import re
from typing import Any

FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)
TRAILING_COMMA_PATTERN = re.compile(r",\s*([\]\}])")


def strip_code_fences(text: str) -> str:
    match = FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _loads_lenient(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # Models often leave a trailing comma before a closing bracket
        return json.loads(TRAILING_COMMA_PATTERN.sub(r"\1", text))


def _slice_between(text: str, start: str, end: str) -> str | None:
    first = text.find(start)
    last = text.rfind(end)
    if first == -1 or last <= first:
        return None
    return text[first:last + 1]


def parse_json_object(response: str) -> dict:
    """Extract a JSON object from a model response.

    Tries direct parsing, then a fenced block, then the outermost braces.

    Raises:
        ValueError: No object could be recovered
    """
    text = strip_code_fences(response)
    candidates = [text]
    sliced = _slice_between(text, "{", "}")
    if sliced and sliced != text:
        candidates.append(sliced)

    for candidate in candidates:
        try:
            parsed = _loads_lenient(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ValueError(f"No JSON object found in response: {response[:200]}...")


def parse_json_array(response: str) -> list:
    """Extract a JSON array from a model response.

    Accepts a bare array, or an object wrapping the array under any key (the
    first array-valued property wins). Falls back to slicing from the first
    ``[`` to the last ``]``.

    Raises:
        ValueError: No array could be recovered
    """
    text = strip_code_fences(response)

    try:
        parsed = _loads_lenient(text)
    except json.JSONDecodeError:
        parsed = None

    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for value in parsed.values():
            if isinstance(value, list):
                return value

    sliced = _slice_between(text, "[", "]")
    if sliced:
        try:
            parsed = _loads_lenient(sliced)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return parsed

    raise ValueError(f"No JSON array found in response: {response[:200]}...")


def first_str(data: dict, *keys: str, default: str = "") -> str:
    """Read the first present string among camelCase/snake_case key variants."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return default


def str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return []
