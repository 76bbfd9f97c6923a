"""Tests for the Veritas pipeline."""

import json

import pytest
from pydantic import ValidationError
from unittest.mock import Mock

from veritas.agents.verifier import (
    VerifierAgent,
    decode_item,
    parse_oracle_response,
)
from veritas.config import settings
from veritas.errors import ConfigurationError, MalformedOutputError, OracleError, PipelineError
from veritas.graph.orchestrator import VeritasGraph, run_verification
from veritas.models.schemas import (
    AnalysisStats,
    CheckStatus,
    Chunk,
    PipelineProgress,
    RunStatus,
    VerificationItem,
)
from veritas.processing.context import annotate, find_last_marker
from veritas.processing.ingest import document_to_text, pages_to_text
from veritas.processing.segmenter import segment
from veritas.report.aggregator import aggregate, summarize
from veritas.report.exporter import export_filename, to_csv


def make_item(quote="Some quote", status=CheckStatus.ACCURATE, **kwargs):
    """Build a VerificationItem with sensible defaults."""
    data = {
        "location": "Page 1, Para 1",
        "quote_text": quote,
        "claimed_source": "Someone",
        "status": status,
        "notes": "",
    }
    data.update(kwargs)
    return VerificationItem(**data)


def oracle_json(*quotes, status="ACCURATE"):
    """Raw oracle answer carrying one item per quote."""
    return json.dumps({
        "items": [
            {
                "location": "Page 1, Para 1",
                "quote_text": quote,
                "claimed_source": "Someone",
                "status": status,
                "notes": "Checked."
            }
            for quote in quotes
        ]
    })


def make_graph(responses):
    """Graph whose oracle returns (or raises) the given responses in order."""
    llm_service = Mock()
    llm_service.generate.side_effect = responses
    graph = VeritasGraph(verifier_agent=VerifierAgent(llm_service=llm_service))
    return graph, llm_service


SAMPLE_TEXTS = [
    "",
    "short",
    "a" * 25,
    "line one\nline two\nline three\n" * 7,
    "[P1]\nAlpha\n[P2]\nBeta",
    "\n\n\n\n\n\n\n\n\n\n\n\n",
    "no breaks " * 40,
    "mixed\r\nline endings\rand\ttabs\n" * 5,
]


class TestDataModels:
    """Test Pydantic data models."""

    def test_item_defaults(self):
        """Empty claimed source becomes 'unspecified', notes default to ''."""
        item = VerificationItem(
            location="Page 2, Para 1",
            quote_text="To be, or not to be",
            claimed_source="  ",
            status="ACCURATE"
        )

        assert item.claimed_source == "unspecified"
        assert item.notes == ""
        assert item.status == CheckStatus.ACCURATE

    def test_item_rejects_unknown_status(self):
        with pytest.raises(ValidationError):
            make_item(status="MOSTLY_TRUE")

    def test_item_is_immutable(self):
        item = make_item()

        with pytest.raises(ValidationError):
            item.status = CheckStatus.UNVERIFIABLE

    def test_progress_bounds(self):
        assert PipelineProgress(current=1, total=4).percent == 25
        assert PipelineProgress(current=0, total=0).percent == 100

        with pytest.raises(ValidationError):
            PipelineProgress(current=5, total=4)


class TestSegmenter:
    """Test paragraph-aware segmentation."""

    @pytest.mark.parametrize("text", SAMPLE_TEXTS)
    @pytest.mark.parametrize("max_size", [1, 3, 10, 64, 1000])
    def test_chunks_reconstruct_text(self, text, max_size):
        chunks = segment(text, max_size)

        assert "".join(c.text for c in chunks) == text
        assert all(len(c.text) <= max_size for c in chunks)
        assert all(c.text for c in chunks)

        offset = 0
        for chunk in chunks:
            assert chunk.start_index == offset
            offset += len(chunk.text)

    def test_empty_text_yields_no_chunks(self):
        assert segment("", 10) == []

    def test_short_text_is_single_chunk(self):
        text = "Exactly ten"[:10]

        assert segment(text, 10) == [Chunk(text=text, start_index=0)]
        assert segment("tiny", 30000) == [Chunk(text="tiny", start_index=0)]

    def test_hard_cut_without_line_breaks(self):
        chunks = segment("a" * 25, 10)

        assert [len(c.text) for c in chunks] == [10, 10, 5]
        assert [c.start_index for c in chunks] == [0, 10, 20]

    def test_cuts_at_line_break_near_boundary(self):
        text = "a" * 9 + "\n" + "b" * 15

        chunks = segment(text, 10)

        assert chunks[0].text == "a" * 9
        assert chunks[1].text.startswith("\n")
        assert chunks[1].start_index == 9

    def test_ignores_line_break_far_from_boundary(self):
        text = "a" * 5 + "\n" + "b" * 20

        chunks = segment(text, 10)

        assert len(chunks[0].text) == 10

    def test_deterministic(self):
        text = "Para one.\nPara two is longer.\n" * 50

        assert segment(text, 77) == segment(text, 77)

    @pytest.mark.parametrize("max_size", [0, -5, 2.5, None])
    def test_rejects_invalid_size(self, max_size):
        with pytest.raises(ValueError):
            segment("text", max_size)


class TestContextStitcher:
    """Test continuation hints across chunk boundaries."""

    FULL_TEXT = "[P1]\nAlpha\n[P2]\nBeta"

    def test_continued_from_last_marker(self):
        chunks = segment(self.FULL_TEXT, 15)

        assert chunks[1] == Chunk(text="\nBeta", start_index=15)
        assert annotate(self.FULL_TEXT, 1, chunks[1]) == "(Context: Continued from [P2])\n\nBeta"

    def test_first_chunk_unmodified(self):
        chunk = Chunk(text=self.FULL_TEXT[:10], start_index=0)

        assert annotate(self.FULL_TEXT, 0, chunk) == chunk.text

    def test_no_marker_passthrough(self):
        text = "Plain manuscript without page tags.\n" * 10

        for index, chunk in enumerate(segment(text, 40)):
            assert annotate(text, index, chunk) == chunk.text

    def test_marker_inside_chunk_is_not_used(self):
        text = "Intro text\n[P7]\nBody"
        chunk = Chunk(text=text[5:], start_index=5)

        assert annotate(text, 1, chunk) == chunk.text

    def test_find_last_marker(self):
        assert find_last_marker("[P1] a [P12] b [Px]") == "[P12]"
        assert find_last_marker("[Word Document Content]\nbody") is None

    def test_ingest_layout(self):
        text = pages_to_text(["first page", "second page"])

        assert text == "\n[P1]\nfirst page\n\n\n[P2]\nsecond page\n\n"
        assert document_to_text("body") == "[Word Document Content]\nbody"
        assert find_last_marker(document_to_text("body")) is None


class TestAggregator:
    """Test statistics derivation."""

    def test_empty(self):
        assert aggregate([]) == AnalysisStats()

    def test_counts_sum_to_total(self):
        statuses = [
            CheckStatus.ACCURATE, CheckStatus.ACCURATE, CheckStatus.PARAPHRASED,
            CheckStatus.MISATTRIBUTED, CheckStatus.UNVERIFIABLE, CheckStatus.UNVERIFIABLE,
        ]
        items = [make_item(status=s) for s in statuses]

        stats = aggregate(items)

        assert stats.total == len(items)
        assert stats.accurate + stats.paraphrased + stats.misattributed + stats.unverifiable == stats.total
        assert (stats.accurate, stats.paraphrased, stats.misattributed, stats.unverifiable) == (2, 1, 1, 2)

    def test_summary(self):
        assert "No quotations" in summarize(AnalysisStats())

        summary = summarize(aggregate([make_item(), make_item(status=CheckStatus.MISATTRIBUTED)]))
        assert "Checked 2 citations" in summary
        assert "1 misattributed" in summary


class TestExporter:
    """Test CSV export."""

    def test_quotes_are_doubled(self):
        item = make_item(notes='He said "stop".')

        csv_text = to_csv([item])

        assert '"He said ""stop""."' in csv_text

    def test_layout(self):
        items = [
            make_item(quote="first", notes="line\nbreak"),
            make_item(quote="second", status=CheckStatus.PARAPHRASED, claimed_source=""),
        ]

        lines = to_csv(items).split("\n")

        assert lines[0] == "location,quote_text,claimed_source,status,notes"
        assert lines[1] == '"Page 1, Para 1","first","Someone","ACCURATE","line'
        assert lines[2] == 'break"'
        assert lines[3] == '"Page 1, Para 1","second","unspecified","PARAPHRASED",""'

    def test_empty_result_set(self):
        assert to_csv([]) == ""

    def test_filename(self):
        from datetime import datetime

        assert export_filename(datetime(2024, 3, 9)) == "veritas_report_2024-03-09.csv"


class TestVerifierAgent:
    """Test the oracle adapter."""

    def test_strips_code_fences(self):
        raw = "```json\n" + oracle_json("a quote") + "\n```"

        assert parse_oracle_response(raw)[0]["quote_text"] == "a quote"

    def test_accepts_bare_array_and_surrounding_prose(self):
        array = json.loads(oracle_json("q1", "q2"))["items"]

        assert len(parse_oracle_response(json.dumps(array))) == 2
        assert len(parse_oracle_response("Here you go:\n" + json.dumps(array) + "\nDone.")) == 2

    def test_page_marker_in_preamble(self):
        raw = "Findings for [P2]:\n" + oracle_json("q1", "q2") + "\nSee also [P3]."

        items = parse_oracle_response(raw)

        assert [i["quote_text"] for i in items] == ["q1", "q2"]

    def test_page_marker_preamble_keeps_chunk_items(self):
        llm_service = Mock()
        llm_service.generate.return_value = "Checked [P2] and [P3]:\n```json\n" + oracle_json("kept") + "\n```"

        items = VerifierAgent(llm_service=llm_service).verify("[P2]\nSome text")

        assert [i.quote_text for i in items] == ["kept"]

    def test_empty_response_has_no_items(self):
        assert parse_oracle_response("") == []
        assert parse_oracle_response(None) == []

    @pytest.mark.parametrize("raw", ["not json at all", "{\"items\": 3}", "42", "[1, 2"])
    def test_malformed_response_raises(self, raw):
        with pytest.raises(MalformedOutputError):
            parse_oracle_response(raw)

    def test_decode_item_result(self):
        assert decode_item({"location": "P1", "quote_text": "q", "status": "accurate "}).ok
        assert not decode_item("a string").ok
        assert not decode_item({"location": "P1", "status": "ACCURATE"}).ok

    def test_drops_invalid_items_keeps_others(self):
        llm_service = Mock()
        llm_service.generate.return_value = json.dumps({"items": [
            {"location": "Page 1, Para 1", "quote_text": "kept", "status": "ACCURATE", "notes": ""},
            {"location": "Page 1, Para 2", "quote_text": "bad status", "status": "FAKE"},
            {"quote_text": "no location", "status": "ACCURATE"},
            {"location": "Page 2, Para 1", "quote_text": "also kept", "status": "unverifiable"},
        ]})
        agent = VerifierAgent(llm_service=llm_service)

        items = agent.verify("some text")

        assert [i.quote_text for i in items] == ["kept", "also kept"]
        assert items[1].status == CheckStatus.UNVERIFIABLE
        assert items[1].claimed_source == "unspecified"

    def test_malformed_output_yields_no_items(self):
        llm_service = Mock()
        llm_service.generate.return_value = "I could not find anything, sorry."
        agent = VerifierAgent(llm_service=llm_service)

        assert agent.verify("some text") == []

    def test_backend_failure_raises_oracle_error(self):
        llm_service = Mock()
        llm_service.generate.side_effect = ConnectionError("network down")
        agent = VerifierAgent(llm_service=llm_service)

        with pytest.raises(OracleError):
            agent.verify("some text")

    def test_blank_text_skips_oracle(self):
        llm_service = Mock()
        agent = VerifierAgent(llm_service=llm_service)

        assert agent.verify("   \n") == []
        llm_service.generate.assert_not_called()

    def test_prompt_carries_text(self):
        llm_service = Mock()
        llm_service.generate.return_value = oracle_json()
        agent = VerifierAgent(llm_service=llm_service)

        agent.verify("(Context: Continued from [P3])\nbody")

        kwargs = llm_service.generate.call_args.kwargs
        assert "(Context: Continued from [P3])\nbody" in kwargs["user_prompt"]
        assert "MISATTRIBUTED" in kwargs["system_prompt"]


class TestOrchestrator:
    """Test the chunked pipeline run."""

    def test_processes_chunks_in_order(self):
        graph, llm_service = make_graph([oracle_json("one"), oracle_json("two", "three")])
        text = "[P1]\nAlpha\n[P2]\nBeta"

        run = graph.run(text, max_chunk_size=15)
        updates = list(run)

        assert [u.progress.current for u in updates] == [1, 2]
        assert all(u.progress.total == 2 for u in updates)
        assert [i.quote_text for i in run.items] == ["one", "two", "three"]
        assert run.status == RunStatus.COMPLETED
        assert run.stats.total == 3

        second_prompt = llm_service.generate.call_args_list[1].kwargs["user_prompt"]
        assert "(Context: Continued from [P2])\n\nBeta" in second_prompt

    def test_partial_failure_preserves_items(self):
        graph, llm_service = make_graph([oracle_json("kept"), ConnectionError("network down")])
        text = "x" * 30

        run = graph.run(text, max_chunk_size=10)

        with pytest.raises(PipelineError) as exc_info:
            run.drain()

        assert [i.quote_text for i in run.items] == ["kept"]
        assert run.progress.current == 1
        assert run.progress.total == 3
        assert run.status == RunStatus.FAILED
        assert llm_service.generate.call_count == 2

        error = exc_info.value
        assert error.chunk_index == 1
        assert len(error.partial_items) == 1
        assert isinstance(error.cause, OracleError)

    def test_malformed_chunk_does_not_fail_run(self):
        graph, llm_service = make_graph([
            oracle_json("first"),
            "this is not JSON",
            oracle_json("third"),
        ])

        run = graph.run("y" * 30, max_chunk_size=10).drain()

        assert run.status == RunStatus.COMPLETED
        assert run.progress.current == 3
        assert [i.quote_text for i in run.items] == ["first", "third"]
        assert llm_service.generate.call_count == 3

    def test_cancel_between_chunks(self):
        graph, llm_service = make_graph([oracle_json("a"), oracle_json("b"), oracle_json("c")])

        run = graph.run("z" * 30, max_chunk_size=10)
        seen = []
        for update in run:
            seen.append(update)
            run.cancel()

        assert len(seen) == 1
        assert llm_service.generate.call_count == 1
        assert run.status == RunStatus.CANCELLED
        assert [i.quote_text for i in run.items] == ["a"]

    def test_cancel_during_oracle_call(self):
        llm_service = Mock()
        graph = VeritasGraph(verifier_agent=VerifierAgent(llm_service=llm_service))
        run = graph.run("z" * 30, max_chunk_size=10)

        def answer_then_cancel(**kwargs):
            run.cancel()
            return oracle_json("in flight")

        llm_service.generate.side_effect = answer_then_cancel

        run.drain()

        assert llm_service.generate.call_count == 1
        assert [i.quote_text for i in run.items] == ["in flight"]
        assert run.status == RunStatus.CANCELLED
        assert run.progress.current == 1

    def test_abandoned_iteration_is_cancelled(self):
        graph, llm_service = make_graph([oracle_json("a"), oracle_json("b"), oracle_json("c")])

        run = graph.run("z" * 30, max_chunk_size=10)
        updates = iter(run)
        next(updates)
        updates.close()

        assert run.status == RunStatus.CANCELLED
        assert run.progress.current == 1
        assert llm_service.generate.call_count == 1
        assert [i.quote_text for i in run.items] == ["a"]

    def test_closing_after_last_chunk_is_completed(self):
        graph, _ = make_graph([oracle_json("a"), oracle_json("b")])

        run = graph.run("z" * 20, max_chunk_size=10)
        updates = iter(run)
        next(updates)
        next(updates)
        updates.close()

        assert run.status == RunStatus.COMPLETED

    def test_empty_text_is_configuration_error(self):
        graph, llm_service = make_graph([])

        with pytest.raises(ConfigurationError):
            graph.run("   \n ")

        llm_service.generate.assert_not_called()

    def test_missing_api_key_is_configuration_error(self, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
        graph = VeritasGraph()

        with pytest.raises(ConfigurationError):
            graph.run("Some manuscript text")

    def test_invalid_chunk_size_is_configuration_error(self):
        graph, _ = make_graph([])

        with pytest.raises(ConfigurationError):
            graph.run("text", max_chunk_size=-1)

    def test_progress_absent_before_iteration(self):
        graph, _ = make_graph([oracle_json()])

        run = graph.run("text")

        assert run.progress is None
        assert run.status == RunStatus.PENDING
        assert run.items == ()

    def test_run_iterates_once(self):
        graph, _ = make_graph([oracle_json("only")])
        run = graph.run("text").drain()

        with pytest.raises(RuntimeError):
            iter(run)

    def test_run_verification_helper(self):
        llm_service = Mock()
        llm_service.generate.side_effect = [oracle_json("a"), oracle_json("b")]

        run = run_verification(
            "v" * 20,
            max_chunk_size=10,
            verifier_agent=VerifierAgent(llm_service=llm_service)
        )

        assert run.status == RunStatus.COMPLETED
        assert run.stats.total == 2

    def test_many_chunks(self):
        responses = [oracle_json(f"q{i}") for i in range(40)]
        graph, llm_service = make_graph(responses)

        run = graph.run("w" * 400, max_chunk_size=10).drain()

        assert run.progress.current == run.progress.total == 40
        assert [i.quote_text for i in run.items] == [f"q{i}" for i in range(40)]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
