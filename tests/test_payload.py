"""Tests for request-only payload shaping."""

from parley.history import ToolCallBlock, ToolResponseBlock, TextBlock, ai, human, tool_result
from parley.history.content import Entry
from parley.providers.capabilities import ProviderFormat, capabilities_for
from parley.providers.payload import build_request_entries, fan_out_responses, is_echo_pair, suppress_echoes


def call(call_id, name="read_file"):
    return ai(ToolCallBlock(call_id, name, {"path": "a.txt"}))


class TestEchoDetection:
    """Tests for is_echo_pair."""

    def test_single_call_followed_by_matching_response(self):
        entries = [call("c1"), tool_result("c1", "read_file", "ok")]
        assert is_echo_pair(entries, 0)

    def test_mismatched_ids(self):
        entries = [call("c1"), tool_result("c2", "read_file", "ok")]
        assert not is_echo_pair(entries, 0)

    def test_two_calls_are_not_an_echo(self):
        entry = ai(ToolCallBlock("c1", "a", {}), ToolCallBlock("c2", "b", {}))
        entries = [entry, tool_result("c1", "a", "ok")]
        assert not is_echo_pair(entries, 0)

    def test_last_entry_has_no_pair(self):
        assert not is_echo_pair([call("c1")], 0)


class TestSuppressEchoes:
    """Tests for echo suppression."""

    def test_first_occurrence_is_kept(self):
        entries = [human("go"), call("c1"), tool_result("c1", "read_file", "ok")]
        assert suppress_echoes(entries) == entries

    def test_resent_call_is_dropped(self):
        entries = [
            human("go"),
            call("c1"),
            tool_result("c1", "read_file", "ok"),
            call("c1"),
            tool_result("c1", "read_file", "ok"),
        ]
        shaped = suppress_echoes(entries)
        assert len(shaped) == 4
        assert shaped[-1].tool_responses[0].call_id == "c1"

    def test_known_ids_from_history(self):
        entries = [call("c1"), tool_result("c1", "read_file", "ok")]
        shaped = suppress_echoes(entries, known_call_ids={"c1"})
        assert [e.speaker for e in shaped] == ["tool"]

    def test_input_list_is_not_modified(self):
        entries = [call("c1"), tool_result("c1", "read_file", "ok")]
        suppress_echoes(entries, known_call_ids={"c1"})
        assert len(entries) == 2


class TestFanOut:
    """Tests for splitting grouped tool responses."""

    def test_grouped_responses_are_split(self):
        grouped = Entry(
            "tool",
            [ToolResponseBlock("c1", "a", "one"), ToolResponseBlock("c2", "b", "two")],
        )
        shaped = fan_out_responses([grouped])
        assert [e.tool_responses[0].call_id for e in shaped] == ["c1", "c2"]
        assert len(grouped.blocks) == 2

    def test_other_blocks_keep_their_position(self):
        grouped = Entry(
            "tool",
            [ToolResponseBlock("c1", "a", "one"), TextBlock("note"), ToolResponseBlock("c2", "b", "two")],
        )
        shaped = fan_out_responses([grouped])
        assert len(shaped) == 3
        assert shaped[0].tool_responses[0].call_id == "c1"
        assert shaped[1].text == "note"
        assert shaped[2].tool_responses[0].call_id == "c2"

    def test_leading_text_stays_first(self):
        grouped = Entry(
            "tool",
            [TextBlock("results:"), ToolResponseBlock("c1", "a", "one"), ToolResponseBlock("c2", "b", "two")],
        )
        shaped = fan_out_responses([grouped])
        assert shaped[0].text == "results:"
        assert [e.tool_responses[0].call_id for e in shaped[1:]] == ["c1", "c2"]


class TestBuildRequestEntries:
    """Tests for capability-driven shaping."""

    def test_gemini_keeps_echoes(self):
        entries = [call("c1"), tool_result("c1", "read_file", "ok"), call("c1"), tool_result("c1", "read_file", "ok")]
        shaped = build_request_entries(entries, capabilities_for(ProviderFormat.GEMINI))
        assert len(shaped) == 4

    def test_openai_drops_echoes_and_fans_out(self):
        grouped = Entry("tool", [ToolResponseBlock("c2", "a", "1"), ToolResponseBlock("c3", "b", "2")])
        entries = [call("c1"), tool_result("c1", "read_file", "ok"), call("c1"), tool_result("c1", "read_file", "ok"), grouped]
        shaped = build_request_entries(entries, capabilities_for(ProviderFormat.OPENAI))
        assert len(shaped) == 5
        assert all(len(e.tool_responses) <= 1 for e in shaped)
