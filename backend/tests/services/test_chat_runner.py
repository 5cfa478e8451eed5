"""Chat runner — streaming, tool rounds, error boundaries, and cancellation.

Invariants:
    - Text chunks arrive in order and reply_text is their concatenation
    - Tool results are fed back as tool_result blocks tied to the tool_use id
    - Tool failures become is_error results instead of ending the turn
    - The round limit ends the turn with a notice
    - Errors before the first chunk propagate; later ones are reported inline
"""

import json
from types import SimpleNamespace

import pytest

from chatdesk.core.errors import AIError, ExternalApiError
from chatdesk.services.chat_runner import (
    TOOL_LIMIT_NOTICE,
    ChatRunner,
    history_to_messages,
)
from chatdesk.services.define_tools import DATA_TOOLS

from tests.services.mock_anthropic import (
    MockChatClient,
    failing_response,
    text_response,
    tool_response,
)


class FakeDispatch:
    def __init__(self, results=None):
        self.log = []
        self.results = results or {}

    async def execute(self, tool_name, tool_input):
        self.log.append((tool_name, tool_input))
        r = self.results.get(tool_name, {"status": "ok", "data": {"temperature": 3}})
        if isinstance(r, Exception):
            raise r
        return r


def _runner(responses, dispatch=None, max_tool_rounds=5):
    client = MockChatClient(responses)
    runner = ChatRunner(
        client, dispatch or FakeDispatch(),
        model="test-model", max_tokens=256, max_tool_rounds=max_tool_rounds,
    )
    return runner, client


async def _collect(runner, history=(), message="Weather in Oslo?"):
    return [chunk async for chunk in runner.run(list(history), message)]


def _msg(role, content):
    return SimpleNamespace(role=role, content=content)


# -- History conversion --------------------------------------------------------

def test_history_drops_leading_assistant_and_empty_messages():
    history = [
        _msg("assistant", "Welcome!"),
        _msg("user", "hi"),
        _msg("assistant", ""),
        _msg("assistant", "hello"),
    ]
    assert history_to_messages(history) == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]


# -- Plain replies -------------------------------------------------------------

async def test_text_reply_streams_chunks_in_order():
    runner, client = _runner([text_response("It is ", "cold.")])

    chunks = await _collect(runner)

    assert chunks == ["It is ", "cold."]
    assert runner.reply_text == "It is cold."
    assert runner.tool_results == []
    call = client.calls[0]
    assert call["model"] == "test-model"
    assert call["tools"] == DATA_TOOLS
    assert "Chatdesk" in call["system"]
    assert call["messages"][-1] == {"role": "user", "content": "Weather in Oslo?"}


async def test_history_precedes_new_message():
    runner, client = _runner([text_response("ok")])
    await _collect(runner, history=[_msg("user", "earlier"), _msg("assistant", "reply")])
    assert [m["role"] for m in client.calls[0]["messages"]] == ["user", "assistant", "user"]


# -- Tool rounds ---------------------------------------------------------------

async def test_tool_round_feeds_result_back():
    dispatch = FakeDispatch()
    runner, client = _runner(
        [
            tool_response("get_weather", {"location": "Oslo"}, text="Checking. "),
            text_response("3 degrees."),
        ],
        dispatch,
    )

    chunks = await _collect(runner)

    assert chunks == ["Checking. ", "3 degrees."]
    assert dispatch.log == [("get_weather", {"location": "Oslo"})]
    assert runner.tool_results == [{
        "tool": "get_weather",
        "input": {"location": "Oslo"},
        "result": {"status": "ok", "data": {"temperature": 3}},
    }]

    second = client.calls[1]["messages"]
    assistant_turn, tool_turn = second[-2], second[-1]
    assert assistant_turn["role"] == "assistant"
    assert assistant_turn["content"][-1]["type"] == "tool_use"
    block = tool_turn["content"][0]
    assert block["type"] == "tool_result"
    assert block["tool_use_id"] == "toolu_get_weather_test"
    assert block["is_error"] is False
    assert json.loads(block["content"])["data"] == {"temperature": 3}


async def test_tool_app_error_becomes_error_result():
    dispatch = FakeDispatch({"get_weather": ExternalApiError("weather down")})
    runner, client = _runner(
        [tool_response("get_weather", {"location": "Oslo"}), text_response("Sorry.")],
        dispatch,
    )

    await _collect(runner)

    block = client.calls[1]["messages"][-1]["content"][0]
    assert block["is_error"] is True
    assert json.loads(block["content"]) == {
        "status": "error", "error_code": "EXTERNAL_API_ERROR", "message": "weather down",
    }


async def test_unexpected_tool_exception_is_contained():
    dispatch = FakeDispatch({"get_stock_quote": KeyError("boom")})
    runner, client = _runner(
        [tool_response("get_stock_quote", {"symbol": "AAPL"}), text_response("n/a")],
        dispatch,
    )

    chunks = await _collect(runner)

    assert chunks == ["n/a"]
    result = runner.tool_results[0]["result"]
    assert result["error_code"] == "TOOL_EXECUTION_ERROR"


async def test_tool_round_limit_ends_turn_with_notice():
    responses = [
        tool_response("get_weather", {"location": f"City {i}"}) for i in range(3)
    ]
    runner, client = _runner(responses, max_tool_rounds=2)

    chunks = await _collect(runner)

    assert chunks == [TOOL_LIMIT_NOTICE]
    assert len(client.calls) == 3
    assert len(runner.tool_results) == 3


# -- Errors and cancellation ---------------------------------------------------

async def test_error_before_first_chunk_propagates():
    runner, _ = _runner([AIError("AI service request failed")])
    with pytest.raises(AIError):
        await _collect(runner)


async def test_error_after_first_chunk_is_reported_inline():
    runner, _ = _runner([
        failing_response(AIError("AI service request failed"), "Partial"),
    ])

    chunks = await _collect(runner)

    assert chunks == ["Partial", "\n\n[Error: AI service request failed]"]
    assert runner.reply_text.endswith("[Error: AI service request failed]")


async def test_closing_mid_stream_closes_model_stream():
    runner, client = _runner([text_response("one", "two", "three")])
    chunks = runner.run([], "hi")

    assert await chunks.__anext__() == "one"
    await chunks.aclose()

    assert client.closed == 1
    assert runner.reply_text == "one"
