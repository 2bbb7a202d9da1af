from __future__ import annotations

from utils import extract_json_object, strip_thinking_tokens


def test_object_wrapped_in_prose() -> None:
    raw = 'Here is the summary: {"summary": "Great ramen", "popularDishes": ["tonkotsu"]} Hope this helps!'
    assert extract_json_object(raw) == {"summary": "Great ramen", "popularDishes": ["tonkotsu"]}


def test_nested_objects_and_braces_in_strings() -> None:
    raw = 'Result -> {"a": {"b": 1}, "note": "use } carefully"} trailing {"ignored": true}'
    assert extract_json_object(raw) == {"a": {"b": 1}, "note": "use } carefully"}


def test_skips_unparseable_block() -> None:
    raw = "{not json} then {\"ok\": true}"
    assert extract_json_object(raw) == {"ok": True}


def test_no_object() -> None:
    assert extract_json_object("no json here") is None
    assert extract_json_object("") is None
    assert extract_json_object(None) is None
    assert extract_json_object('{"unterminated": 1') is None


def test_thinking_blocks_removed() -> None:
    raw = '<think>{"draft": 1}</think>{"final": 2}'
    assert strip_thinking_tokens(raw) == '{"final": 2}'
    assert extract_json_object(raw) == {"final": 2}


def test_unclosed_brace_before_object_is_skipped() -> None:
    raw = 'Sorry :-{ here it is: {"summary": "Great ramen"} Hope this helps!'
    assert extract_json_object(raw) == {"summary": "Great ramen"}
