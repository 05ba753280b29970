"""Tests for the streaming chat-completion client."""

import requests

from nyocoder.llm import (
    FINISH_REQUEST_FAILED,
    FINISH_STOPPED,
    LLMClient,
    Message,
    build_system_prompt,
    message_to_payload,
)
from nyocoder.stream import ToolCall

from conftest import FakeHttp, FakeResponse, sse_lines, text_frame, tool_frame


def make_client(*responses, **kwargs):
    http = FakeHttp(*responses)
    client = LLMClient("http://localhost:8080/", "sk-abc", "qwen", tools=[{"type": "function"}],
                       http=http, **kwargs)
    return client, http


class TestMessagePayload:
    def test_plain_text(self):
        assert message_to_payload(Message.user("hi")) == {"role": "user", "content": "hi"}

    def test_tool_calls(self):
        msg = Message.assistant("", [ToolCall(id="c1", name="read_file", arguments='{"filename": "a"}')])
        payload = message_to_payload(msg)
        assert payload["content"] == ""
        assert payload["tool_calls"] == [{
            "id": "c1", "type": "function",
            "function": {"name": "read_file", "arguments": '{"filename": "a"}'},
        }]

    def test_tool_result(self):
        payload = message_to_payload(Message.tool("Exit Code: 0\nOutput:\nok", "c1"))
        assert payload == {"role": "tool", "tool_call_id": "c1", "content": "Exit Code: 0\nOutput:\nok"}

    def test_image_parts(self):
        payload = message_to_payload(Message.user("look", b"\x89PNG"))
        assert payload["content"][0] == {"type": "text", "text": "look"}
        assert payload["content"][1]["image_url"]["url"].startswith("data:image/png;base64,")

    def test_char_count_includes_tool_calls(self):
        msg = Message.assistant("ab", [ToolCall(name="cd", arguments="efg")])
        assert msg.char_count == 7


class TestSystemPrompt:
    def test_project_instructions_appended(self):
        prompt = build_system_prompt("Use tabs.")
        assert prompt.endswith("Use tabs.")
        assert "AGENT.md" in prompt

    def test_without_instructions(self):
        assert "AGENT.md" not in build_system_prompt(None)


class TestComplete:
    def test_streams_text(self):
        client, http = make_client(FakeResponse(sse_lines(text_frame("Hello "), text_frame("world", "stop"))))
        out = []

        response = client.complete([Message.user("hi")], output=out.append)

        assert response.content == "Hello world"
        assert response.finish_reason == "stop"
        assert not response.has_tool_calls()
        assert "".join(out) == "Hello world"

    def test_request_shape(self):
        client, http = make_client(FakeResponse(sse_lines(text_frame("x"))))
        client.complete([Message.user("hi")])

        post = http.posts[0]
        assert post["url"] == "http://localhost:8080/v1/chat/completions"
        assert post["headers"]["Authorization"] == "Bearer sk-abc"
        assert post["payload"]["stream"] is True
        assert post["payload"]["model"] == "qwen"
        assert post["payload"]["tools"] == [{"type": "function"}]
        assert post["payload"]["messages"][0]["role"] == "system"
        assert post["payload"]["messages"][1] == {"role": "user", "content": "hi"}

    def test_tool_calls_echoed(self):
        client, _ = make_client(FakeResponse(sse_lines(
            tool_frame(0, "c1", "read_file", '{"filename":'),
            tool_frame(0, arguments=' "a.py"}'),
        )))
        out = []

        response = client.complete(
            [Message.user("read it")],
            output=out.append,
            on_tool_call_started=lambda name: out.append(f"[{name}("),
            on_tool_arguments=out.append,
        )

        assert response.has_tool_calls()
        assert response.tool_calls[0].arguments == '{"filename": "a.py"}'
        assert "".join(out) == '[read_file({"filename": "a.py"})\n'

    def test_transport_failure_is_reported(self):
        client, _ = make_client(requests.ConnectionError("connection refused"))
        out = []

        response = client.complete([Message.user("hi")], output=out.append)

        assert response.failed
        assert response.finish_reason == FINISH_REQUEST_FAILED
        assert "Error sending request" in "".join(out)

    def test_http_error_status(self):
        failing = FakeResponse([], status_error=requests.HTTPError("500 Server Error"))
        client, _ = make_client(failing)

        response = client.complete([Message.user("hi")])

        assert response.failed
        assert failing.closed

    def test_stop_before_request(self):
        client, http = make_client()
        response = client.complete([Message.user("hi")], stop_requested=lambda: True)
        assert response.finish_reason == FINISH_STOPPED
        assert http.posts == []

    def test_stop_mid_stream_closes_response(self):
        resp = FakeResponse(sse_lines(text_frame("a"), text_frame("b"), text_frame("c")))
        client, _ = make_client(resp)
        seen = []
        state = {"stop": False}

        def output(text):
            seen.append(text)
            state["stop"] = True

        response = client.complete([Message.user("hi")], output=output,
                                   stop_requested=lambda: state["stop"])

        assert response.stopped
        assert seen == ["a"]
        assert resp.closed

    def test_upstream_error_frame_is_surfaced(self):
        client, _ = make_client(FakeResponse(sse_lines('data: {"error": "quota"}', text_frame("x"))))
        out = []
        response = client.complete([Message.user("hi")], output=out.append)
        assert "[API Error]" in "".join(out)
        assert response.content == "x"

    def test_close(self):
        client, http = make_client()
        client.close()
        assert http.closed
