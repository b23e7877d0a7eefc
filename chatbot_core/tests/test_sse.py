import json

import pytest

from chatbot_core.providers.sse import SSELineBuffer, delta_content, extract_payload, finish_reason, parse_payload


def test_line_buffer_keeps_partial_line():
    buf = SSELineBuffer()
    assert buf.feed(b'data: {"a"') == []
    assert buf.feed(b': 1}\ndata: [DO') == ['data: {"a": 1}']
    assert buf.feed(b"NE]\n") == ["data: [DONE]"]
    assert buf.pending() == ""


def test_line_buffer_handles_split_multibyte_character():
    raw = "data: 你好\n".encode("utf-8")
    buf = SSELineBuffer()
    lines = []
    for i in range(len(raw)):
        lines.extend(buf.feed(raw[i:i + 1]))
    assert lines == ["data: 你好"]


def test_pending_returns_incomplete_tail():
    buf = SSELineBuffer()
    buf.feed(b"data: {}\ndata: tail")
    assert buf.pending() == "data: tail"


def test_extract_payload_filters_lines():
    assert extract_payload("") is None
    assert extract_payload("   ") is None
    assert extract_payload("data: [DONE]") is None
    assert extract_payload(": keep-alive comment") is None
    assert extract_payload("event: message") is None
    assert extract_payload('  data: {"x": 1}\r') == '{"x": 1}'


def test_delta_and_finish_reason():
    event = parse_payload('{"choices":[{"delta":{"content":"Hi"},"finish_reason":"stop"}]}')
    assert delta_content(event) == "Hi"
    assert finish_reason(event) == "stop"
    assert delta_content({"choices": []}) is None
    assert delta_content({"choices": [{"delta": {}}]}) is None
    assert delta_content([1, 2]) is None
    assert finish_reason({}) is None


def test_parse_payload_rejects_malformed_json():
    with pytest.raises(json.JSONDecodeError):
        parse_payload("{not json")
