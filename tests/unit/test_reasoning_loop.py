import time

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from doc_router.agent.registry import Tool
from doc_router.agent.session import AgentSession, LoopState
from doc_router.config import AgentConfig
from doc_router.errors import SessionTimeout, SynthesisError
from doc_router.llm.service import FinalAnswer, ToolCall, ToolCallRequest


def _call(name: str, text: str = "lookup") -> ToolCallRequest:
    return ToolCallRequest(calls=(ToolCall(name=name, arguments={"input": text}),))


def _session(service, *, max_rounds: int = 3, timeout: float | None = None, invoked=None):
    invoked = invoked if invoked is not None else []

    def _handler(data) -> str:
        invoked.append(data.input)
        return f"fact about {data.input}"

    tools = [Tool(name="lookup", description="Looks up facts.", handler=_handler)]
    return AgentSession(
        name="test",
        service=service,
        system_prompt="Always use the tools.",
        tool_provider=lambda _query: tools,
        config=AgentConfig(max_rounds=max_rounds, session_timeout_seconds=timeout),
    )


def test_final_answer_after_tool_round(make_scripted_service) -> None:
    service = make_scripted_service([_call("lookup", "ottawa"), FinalAnswer("Ottawa.")])
    session = _session(service)

    response = session.run("What is the capital?")

    assert response.text == "Ottawa."
    assert response.rounds == 1
    assert response.tools_invoked == ["lookup"]
    assert response.tools_offered == ["lookup"]
    assert not response.degraded
    assert session.state is LoopState.DONE
    assert [type(message) for message in session.history] == [
        HumanMessage,
        AIMessage,
        ToolMessage,
        AIMessage,
    ]
    tool_message = session.history[2]
    assert tool_message.content == "fact about ottawa"
    assert tool_message.tool_call_id == session.history[1].tool_calls[0]["id"]


def test_rounds_at_budget_still_answer(make_scripted_service) -> None:
    service = make_scripted_service([_call("lookup"), _call("lookup"), FinalAnswer("done")])

    response = _session(service, max_rounds=2).run("question")

    assert response.rounds == 2
    assert response.text == "done"
    assert not response.degraded


def test_rounds_over_budget_return_degraded_partial_answer(make_scripted_service) -> None:
    invoked = []
    service = make_scripted_service(
        [_call("lookup", "a"), _call("lookup", "b"), _call("lookup", "c")]
    )
    session = _session(service, max_rounds=2, invoked=invoked)

    response = session.run("question")

    assert response.degraded
    assert response.error == "ReasoningLoopExceeded"
    assert response.rounds == 2
    assert invoked == ["a", "b"]
    assert response.text == "fact about a\n\nfact about b"
    assert isinstance(session.history[-1], AIMessage)


def test_partial_answer_is_never_empty(make_scripted_service) -> None:
    service = make_scripted_service([_call("lookup"), _call("lookup")])
    session = _session(service, max_rounds=1)
    session._tool_provider = lambda _query: [
        Tool(name="lookup", description="Returns nothing.", handler=lambda data: "  ")
    ]

    response = session.run("question")

    assert response.degraded
    assert response.text.strip()


def test_unknown_tool_is_reprompted_once_without_counting_a_round(make_scripted_service) -> None:
    service = make_scripted_service([_call("imaginary"), _call("lookup"), FinalAnswer("ok")])

    response = _session(service, max_rounds=1).run("question")

    assert response.text == "ok"
    assert response.rounds == 1
    assert not response.degraded
    retry_messages, _ = service.complete_calls[1]
    rejection = retry_messages[-1]
    assert isinstance(rejection, ToolMessage)
    assert "imaginary" in rejection.content
    assert "lookup" in rejection.content


def test_repeated_unknown_tool_escalates(make_scripted_service) -> None:
    service = make_scripted_service([_call("imaginary"), _call("still_imaginary")])

    response = _session(service).run("question")

    assert response.degraded
    assert response.error == "ReasoningLoopExceeded"
    assert response.tools_invoked == []
    assert len(service.complete_calls) == 2


def test_batch_with_unknown_tool_executes_nothing(make_scripted_service) -> None:
    invoked = []
    batch = ToolCallRequest(
        calls=(
            ToolCall(name="lookup", arguments={"input": "x"}),
            ToolCall(name="imaginary", arguments={"input": "y"}),
        )
    )
    service = make_scripted_service([batch, FinalAnswer("ok")])

    _session(service, invoked=invoked).run("question")

    assert invoked == []


def test_invalid_arguments_are_reported_to_the_model(make_scripted_service) -> None:
    bad = ToolCallRequest(calls=(ToolCall(name="lookup", arguments={"input": ""}),))
    service = make_scripted_service([bad, FinalAnswer("recovered")])

    response = _session(service).run("question")

    assert response.text == "recovered"
    messages, _ = service.complete_calls[1]
    assert messages[-1].content.startswith("Error: invalid arguments for lookup")


def test_history_accumulates_within_a_session(make_scripted_service) -> None:
    service = make_scripted_service([FinalAnswer("one"), FinalAnswer("two")])
    session = _session(service)

    session.run("first")
    session.run("second")

    assert [message.content for message in session.history] == ["first", "one", "second", "two"]
    second_call, _ = service.complete_calls[1]
    assert [message.content for message in second_call[1:]] == ["first", "one", "second"]


def test_sessions_do_not_share_history(make_scripted_service) -> None:
    service = make_scripted_service([FinalAnswer("one"), FinalAnswer("two")])
    first = _session(service)
    second = _session(service)

    first.run("first")
    second.run("second")

    assert len(first.history) == 2
    assert [message.content for message in second.history] == ["second", "two"]


def test_reset_clears_history(make_scripted_service) -> None:
    session = _session(make_scripted_service([FinalAnswer("one")]))
    session.run("first")

    session.reset()

    assert session.history == []
    assert session.state is LoopState.AWAITING_QUERY


def test_timeout_discards_partial_turn(make_scripted_service) -> None:
    def _slow(messages, tools):
        time.sleep(0.05)
        return _call("lookup")

    invoked = []
    service = make_scripted_service([FinalAnswer("earlier"), _slow])
    session = _session(service, timeout=0.01, invoked=invoked)
    session.run("earlier question")
    before = list(session.history)

    with pytest.raises(SessionTimeout):
        session.run("slow question")

    assert session.history == before
    assert invoked == []
    assert session.state is LoopState.AWAITING_QUERY


def test_generation_failure_becomes_synthesis_error(make_scripted_service) -> None:
    def _broken(messages, tools):
        raise RuntimeError("provider down")

    session = _session(make_scripted_service([_broken]))

    with pytest.raises(SynthesisError):
        session.run("question")
    assert session.history == []


def test_empty_tool_request_is_a_final_answer(make_scripted_service) -> None:
    service = make_scripted_service([ToolCallRequest(calls=(), text="direct answer")])

    response = _session(service).run("question")

    assert response.text == "direct answer"
    assert response.rounds == 0


def test_nested_session_stops_at_enclosing_deadline(make_scripted_service) -> None:
    def _slow_lookup(data) -> str:
        time.sleep(0.05)
        return "slow fact"

    inner_service = make_scripted_service([_call("lookup"), FinalAnswer("inner done")])
    inner = AgentSession(
        name="inner",
        service=inner_service,
        system_prompt="Always use the tools.",
        tool_provider=lambda _query: [
            Tool(name="lookup", description="Slow lookup.", handler=_slow_lookup)
        ],
        config=AgentConfig(session_timeout_seconds=None),
    )
    delegate = Tool(
        name="delegate",
        description="Asks the inner agent.",
        handler=lambda data: inner.run(data.input).text,
    )
    outer_service = make_scripted_service([_call("delegate"), FinalAnswer("outer done")])
    outer = AgentSession(
        name="outer",
        service=outer_service,
        system_prompt="Always use the tools.",
        tool_provider=lambda _query: [delegate],
        config=AgentConfig(session_timeout_seconds=0.02),
    )

    with pytest.raises(SessionTimeout, match="inner"):
        outer.run("question")

    # The inner agent never got its second model turn.
    assert len(inner_service.complete_calls) == 1
    assert inner.history == []
    assert outer.history == []
