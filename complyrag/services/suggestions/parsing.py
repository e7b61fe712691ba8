from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Union

from complyrag.core.errors import ParseError


@dataclass(frozen=True)
class ParsedArray:
    items: list[dict[str, Any]]


@dataclass(frozen=True)
class ParsedWrapped:
    # The model wrapped the array in an object, e.g. {"rules": [...]}.
    key: str
    items: list[dict[str, Any]]


@dataclass(frozen=True)
class ParsedObject:
    fields: dict[str, Any]


@dataclass(frozen=True)
class Unparseable:
    reason: str


ParseResult = Union[ParsedArray, ParsedWrapped, Unparseable]
ObjectResult = Union[ParsedObject, Unparseable]

_FENCE_RE = re.compile(r"```[A-Za-z]*\s*\n?(.*?)```", re.DOTALL)


def _objects(values: list[Any]) -> list[dict[str, Any]]:
    return [item for item in values if isinstance(item, dict)]


def _interpret(value: Any) -> ParseResult:
    if isinstance(value, list):
        return ParsedArray(_objects(value))
    if isinstance(value, dict):
        for key, inner in value.items():
            if isinstance(inner, list):
                return ParsedWrapped(str(key), _objects(inner))
        return Unparseable("JSON object has no array-valued key")
    return Unparseable(f"JSON value is a {type(value).__name__}, not an array")


def _single(value: Any) -> ObjectResult:
    if isinstance(value, dict):
        return ParsedObject(value)
    if isinstance(value, list):
        objects = _objects(value)
        if objects:
            return ParsedObject(objects[0])
        return Unparseable("JSON array holds no object")
    return Unparseable(f"JSON value is a {type(value).__name__}, not an object")


def _strip_fence(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.replace("```json", "").replace("```", "").strip()


def _load(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"invalid JSON: {exc.msg}") from exc


def _parse_staged(raw: str | None, interpret: Callable[[Any], Any]) -> Any:
    text = (raw or "").strip()
    if not text:
        return Unparseable("empty completion")
    try:
        return interpret(_load(text))
    except ParseError:
        pass
    try:
        return interpret(_load(_strip_fence(text)))
    except ParseError as exc:
        return Unparseable(str(exc))


def parse_candidates(raw: str | None) -> ParseResult:
    """Parse a completion into candidate objects.

    Stages: the whole text as JSON; otherwise the body of a fenced code block,
    tried once. Valid JSON that is neither an array nor an object holding one
    is not retried. Non-object array items are dropped.
    """
    return _parse_staged(raw, _interpret)


def parse_object(raw: str | None) -> ObjectResult:
    # Same stages as parse_candidates; an array yields its first object.
    return _parse_staged(raw, _single)


def candidate_items(result: ParseResult) -> list[dict[str, Any]]:
    if isinstance(result, (ParsedArray, ParsedWrapped)):
        return result.items
    return []
