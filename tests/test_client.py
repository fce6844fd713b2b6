"""Tests for the supervising agent loop and the next speaker check."""

from conftest import ScriptedBackend, collect, gemini_call, gemini_text, make_manager, make_tools, no_sleep

from parley.cancellation import CancellationToken
from parley.core.client import AgentClient
from parley.core.compression import CompressionEngine
from parley.core.events import CompressionStatus, TurnEventType
from parley.core.next_speaker import NextSpeakerChecker, parse_next_speaker
from parley.core.prompts import CONTINUE_PROMPT
from parley.errors import BackendError
from parley.history import HistoryService, TiktokenTokenizer, ToolCallBlock, ai, ai_text, human, tool_result
from parley.settings import RetrySettings, SessionSettings, Settings
from parley.tools import ToolDeclaration, ToolRegistry

MODEL_NEXT = '{"reasoning": "more to do", "next_speaker": "model"}'
USER_NEXT = '{"reasoning": "asked a question", "next_speaker": "user"}'


class FakeGenerate:
    def __init__(self, answers):
        self.answers = list(answers)
        self.calls = []

    async def __call__(self, entries, model):
        self.calls.append(entries)
        answer = self.answers.pop(0) if self.answers else USER_NEXT
        if isinstance(answer, BaseException):
            raise answer
        return answer


class FlagSecondContent:
    """Reports a loop on the second content event."""

    def __init__(self, at_start=False):
        self.at_start = at_start
        self.resets = []
        self.contents = 0

    def reset(self, prompt_id):
        self.resets.append(prompt_id)

    async def turn_started(self, cancel):
        return self.at_start

    def add_and_check(self, event):
        if event.type == TurnEventType.CONTENT:
            self.contents += 1
        return self.contents >= 2


def make_client(scripts, answers=(), session=None, **kwargs):
    backend = ScriptedBackend(scripts)
    settings = Settings(
        retry=RetrySettings(content_initial_delay=0, api_initial_delay=0),
        session=session or SessionSettings(),
    )
    generate = FakeGenerate(answers)
    client = AgentClient(
        make_manager(backend),
        settings,
        tools=kwargs.pop("tools", make_tools()),
        next_speaker=NextSpeakerChecker(generate=generate),
        sleep=no_sleep,
        **kwargs,
    )
    return client, backend, generate


def types(events):
    return [e.type for e in events]


class TestSingleTurn:
    """Tests for one user message without continuation."""

    async def test_text_answer_asks_next_speaker(self):
        client, backend, generate = make_client([[gemini_text("Hi there.")]])

        events = await collect(client.send_message_stream("hello", prompt_id="p1"))

        assert types(events) == [TurnEventType.CONTENT, TurnEventType.FINISHED]
        assert len(generate.calls) == 1
        assert [e.speaker for e in client.get_history()] == ["human", "ai"]

    async def test_tool_call_returns_to_caller(self):
        client, _, generate = make_client([[gemini_call("read_file", {"path": "a"}, "c1")]])

        events = await collect(client.send_message_stream("read a"))

        assert types(events) == [TurnEventType.TOOL_CALL_REQUEST]
        assert client.last_turn.pending_tool_calls[0].call_id == "c1"
        assert generate.calls == []

    async def test_error_stops_the_loop(self):
        client, _, generate = make_client([BackendError("bad", status=400)])

        events = await collect(client.send_message_stream("hello"))

        assert types(events) == [TurnEventType.ERROR]
        assert generate.calls == []

    async def test_caller_cancellation(self):
        client, _, generate = make_client([[gemini_text("one", finish=None), gemini_text("two")]])
        cancel = CancellationToken()

        events = []
        async for event in client.send_message_stream("hello", cancel):
            events.append(event)
            cancel.cancel()

        assert types(events) == [TurnEventType.CONTENT, TurnEventType.USER_CANCELLED]
        assert generate.calls == []
        assert client.get_history() == []


class TestContinuation:
    """Tests for model continuation after a text-only turn."""

    async def test_model_keeps_talking(self):
        client, backend, _ = make_client(
            [[gemini_text("Next, I will check.")], [gemini_text("Checked.")]],
            answers=[MODEL_NEXT, USER_NEXT],
        )

        events = await collect(client.send_message_stream("start"))

        assert types(events).count(TurnEventType.FINISHED) == 2
        assert len(backend.calls) == 2
        last_content = backend.calls[1]["payload"]["contents"][-1]
        assert last_content["parts"][0]["text"] == CONTINUE_PROMPT
        texts = [e.text for e in client.get_history()]
        assert texts == ["start", "Next, I will check.", CONTINUE_PROMPT, "Checked."]

    async def test_turn_budget_bounds_continuations(self):
        client, backend, _ = make_client(
            [[gemini_text("one")], [gemini_text("two")], [gemini_text("three")]],
            answers=[MODEL_NEXT] * 5,
        )

        await collect(client.send_message_stream("start", turns=2))

        assert len(backend.calls) == 2

    async def test_skip_next_speaker_check(self):
        client, _, generate = make_client(
            [[gemini_text("done")]],
            answers=[MODEL_NEXT],
            session=SessionSettings(skip_next_speaker_check=True),
        )

        await collect(client.send_message_stream("start"))

        assert generate.calls == []

    async def test_quota_error_skips_continuation(self):
        client, _, generate = make_client([[gemini_text("done")]], answers=[MODEL_NEXT])
        client.chat.quota_error_occurred = True

        await collect(client.send_message_stream("start"))

        assert generate.calls == []


class TestSessionLimits:
    async def test_max_session_turns(self):
        client, backend, _ = make_client(
            [[gemini_text("one")], [gemini_text("two")]],
            session=SessionSettings(max_session_turns=1, skip_next_speaker_check=True),
        )

        await collect(client.send_message_stream("first"))
        events = await collect(client.send_message_stream("second"))

        assert types(events) == [TurnEventType.MAX_SESSION_TURNS]
        assert events[0].limit == 1
        assert len(backend.calls) == 1


class TestLoopDetection:
    async def test_loop_in_stream_stops_turn(self):
        detector = FlagSecondContent()
        client, _, generate = make_client(
            [[gemini_text("same", finish=None), gemini_text("same")]],
            loop_detector=detector,
        )

        events = await collect(client.send_message_stream("go", prompt_id="p1"))

        assert types(events) == [TurnEventType.CONTENT, TurnEventType.LOOP_DETECTED]
        assert client.get_history() == []
        assert generate.calls == []

    async def test_loop_at_turn_start(self):
        client, backend, _ = make_client([[gemini_text("x")]], loop_detector=FlagSecondContent(at_start=True))

        events = await collect(client.send_message_stream("go"))

        assert types(events) == [TurnEventType.LOOP_DETECTED]
        assert backend.calls == []

    async def test_new_prompt_resets_detector(self):
        detector = FlagSecondContent()
        client, _, _ = make_client(
            [[gemini_text("a")], [gemini_text("b")]],
            loop_detector=detector,
            session=SessionSettings(skip_next_speaker_check=True),
        )

        await collect(client.send_message_stream("go", prompt_id="p1"))
        await collect(client.send_message_stream("go", prompt_id="p2"))

        assert detector.resets == ["p1", "p2"]


class TestCompressionHook:
    async def test_compression_event_precedes_turn(self):
        history = HistoryService()
        for i in range(3):
            history.append(human(f"question {i} " + "words " * 400))
            history.append(ai_text(f"answer {i} " + "words " * 400))

        async def summarize(entries, model):
            return "<state_snapshot>brief</state_snapshot>"

        engine = CompressionEngine(history, summarizer=summarize, limit_for=lambda model: 1000)
        client, _, _ = make_client(
            [[gemini_text("ok")]],
            history=history,
            compression=engine,
            session=SessionSettings(skip_next_speaker_check=True),
        )

        events = await collect(client.send_message_stream("next"))

        assert events[0].type == TurnEventType.CHAT_COMPRESSED
        assert events[0].info.status == CompressionStatus.COMPRESSED
        texts = [e.text for e in client.get_history()]
        assert texts[0] == "<state_snapshot>brief</state_snapshot>"
        assert texts[-2:] == ["next", "ok"]


class TestClientState:
    def test_history_helpers(self):
        client, _, _ = make_client([])
        client.set_history([human("a"), ai_text("b")])
        client.add_history(human("c"))

        assert [e.text for e in client.get_history(curated=True)] == ["a", "b", "c"]

        client.reset_chat()
        assert client.get_history() == []

    def test_current_model_comes_from_active_provider(self):
        client, _, _ = make_client([])
        assert client.current_model() == "gemini-2.5-pro"

    def test_empty_store_and_registry_are_shared(self):
        history = HistoryService()
        tools = ToolRegistry()

        client, _, _ = make_client([], history=history, tools=tools)
        tools.register(ToolDeclaration("read_file", "Read a file", {"type": "object"}))

        assert client.history is history
        assert client.chat.history is history
        assert client.compression.history is history
        assert client.chat.tools is tools
        assert [d.name for d in client.chat.tools.declarations()] == ["read_file"]

    async def test_turns_land_in_the_callers_store(self):
        history = HistoryService()
        client, _, generate = make_client([[gemini_text("Hi there.")]], history=history)

        await collect(client.send_message_stream("hello"))

        assert [e.speaker for e in history.all()] == ["human", "ai"]
        assert len(generate.calls) == 1

    def test_tokenizer_setting_builds_the_store(self):
        client, _, _ = make_client([], session=SessionSettings(tokenizer="tiktoken"))
        assert isinstance(client.history._tokenizer, TiktokenTokenizer)


class TestNextSpeakerChecker:
    """Tests for NextSpeakerChecker.check."""

    async def test_tool_result_means_model(self):
        history = HistoryService()
        history.extend([human("q"), ai(ToolCallBlock("c1", "read_file", {})), tool_result("c1", "read_file", "x")])
        generate = FakeGenerate([])

        result = await NextSpeakerChecker(generate=generate).check(history, "m")

        assert result.next_speaker == "model"
        assert generate.calls == []

    async def test_last_human_means_no_decision(self):
        history = HistoryService()
        history.append(human("q"))

        assert await NextSpeakerChecker(generate=FakeGenerate([MODEL_NEXT])).check(history, "m") is None

    async def test_asks_backend_with_prompt(self):
        history = HistoryService()
        history.extend([human("q"), ai_text("Next, I will run the tests.")])
        generate = FakeGenerate([MODEL_NEXT])

        result = await NextSpeakerChecker(generate=generate).check(history, "m")

        assert result.next_speaker == "model"
        assert generate.calls[0][-1].speaker == "human"

    async def test_backend_failure_means_no_decision(self):
        history = HistoryService()
        history.extend([human("q"), ai_text("a")])

        checker = NextSpeakerChecker(generate=FakeGenerate([RuntimeError("down")]))

        assert await checker.check(history, "m") is None

    def test_parse_fenced_json(self):
        parsed = parse_next_speaker("```json\n" + USER_NEXT + "\n```")
        assert parsed.next_speaker == "user"
        assert parsed.reasoning == "asked a question"

    def test_parse_rejects_unknown_speaker(self):
        assert parse_next_speaker('{"next_speaker": "nobody"}') is None
        assert parse_next_speaker("not json") is None
