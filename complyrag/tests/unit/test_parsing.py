from __future__ import annotations

from complyrag.services.suggestions.parsing import (
    ParsedArray,
    ParsedObject,
    ParsedWrapped,
    Unparseable,
    candidate_items,
    parse_candidates,
    parse_object,
)


def test_plain_array_parses_directly() -> None:
    result = parse_candidates('[{"title": "X", "probability": "high"}]')

    assert isinstance(result, ParsedArray)
    assert candidate_items(result) == [{"title": "X", "probability": "high"}]


def test_fenced_array_matches_unwrapped_output() -> None:
    plain = parse_candidates('[{"title":"X","impact":"low"}]')
    fenced = parse_candidates('```json\n[{"title":"X","impact":"low"}]\n```')

    assert candidate_items(fenced) == candidate_items(plain)
    assert len(candidate_items(fenced)) == 1


def test_object_wrapper_uses_first_array_key() -> None:
    result = parse_candidates('{"risks":[{"title":"X"}]}')

    assert isinstance(result, ParsedWrapped)
    assert result.key == "risks"
    assert candidate_items(result) == [{"title": "X"}]


def test_fenced_object_wrapper_is_scanned_too() -> None:
    result = parse_candidates('Here you go:\n```\n{"meta": 1, "rules": [{"name": "A"}]}\n```')

    assert isinstance(result, ParsedWrapped)
    assert candidate_items(result) == [{"name": "A"}]


def test_garbage_yields_empty_list_not_error() -> None:
    result = parse_candidates("not json")

    assert isinstance(result, Unparseable)
    assert candidate_items(result) == []


def test_empty_and_none_outputs_are_unparseable() -> None:
    assert isinstance(parse_candidates(""), Unparseable)
    assert isinstance(parse_candidates(None), Unparseable)


def test_scalar_json_is_not_retried() -> None:
    result = parse_candidates('"just a string"')

    assert isinstance(result, Unparseable)
    assert "str" in result.reason


def test_object_without_array_is_unparseable() -> None:
    assert isinstance(parse_candidates('{"title": "X"}'), Unparseable)


def test_non_object_items_are_dropped() -> None:
    result = parse_candidates('[{"name": "A"}, "stray", 3, null, {"name": "B"}]')

    assert candidate_items(result) == [{"name": "A"}, {"name": "B"}]


def test_single_object_keeps_its_array_fields() -> None:
    result = parse_object('{"category": "IT", "measures": ["Patch monthly", "Pen test"]}')

    assert isinstance(result, ParsedObject)
    assert result.fields["measures"] == ["Patch monthly", "Pen test"]


def test_single_object_from_fence_or_array() -> None:
    fenced = parse_object('```json\n{"category": "IT"}\n```')
    listed = parse_object('["noise", {"category": "IT"}]')

    assert fenced == listed == ParsedObject({"category": "IT"})


def test_single_object_rejects_scalars_and_empty_arrays() -> None:
    assert isinstance(parse_object("42"), Unparseable)
    assert isinstance(parse_object("[]"), Unparseable)
    assert isinstance(parse_object("kein JSON"), Unparseable)
