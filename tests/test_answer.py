"""Tests for source extraction and answer assembly."""
from manual_qa.rag.answer import AnswerAssembler, distinct_chunks, extract_sources
from manual_qa.rag.models import RetrievedChunk


def chunk(text, score, page, index=0, source="manual.pdf"):
    return RetrievedChunk(
        text=text,
        score=score,
        metadata={"source": source, "page": page, "chunkIndex": index},
    )


def test_sources_deduplicated_by_source_and_page():
    sources = extract_sources([
        chunk("a", 0.6, page=10, index=0),
        chunk("b", 0.9, page=10, index=1),
        chunk("c", 0.7, page=4, index=2),
        chunk("d", 0.8, page=10, source="other.pdf"),
    ])

    assert [(s.source, s.page, s.score) for s in sources] == [
        ("manual.pdf", 10, 0.9),
        ("other.pdf", 10, 0.8),
        ("manual.pdf", 4, 0.7),
    ]


def test_missing_metadata_defaults():
    sources = extract_sources([RetrievedChunk(text="t", score=0.5)])

    assert sources[0].to_dict() == {"source": "Unknown", "page": 0, "score": 0.5}


def test_distinct_chunks_drops_repeats():
    a = chunk("same", 0.9, page=1, index=3)
    repeat = chunk("same", 0.7, page=1, index=3)
    other = chunk("different", 0.7, page=1, index=4)

    assert distinct_chunks([a, repeat, other]) == [a, other]


class TestAnswerAssembler:
    def test_merges_initial_and_tool_chunks(self):
        initial = [chunk("Inspection steps, see rule R205.", 0.95, page=5, index=1)]
        tool = [
            chunk("R205: robots must pass inspection.", 0.9, page=42, index=7),
            chunk("Inspection steps, see rule R205.", 0.4, page=5, index=1),
        ]

        result = AnswerAssembler().assemble("Answer", initial, tool, tokens_estimate=321)

        assert result.found is True
        assert result.answer == "Answer"
        assert result.tokens_estimate == 321
        assert result.contexts_used == 2
        assert result.sources_as_dicts() == [
            {"source": "manual.pdf", "page": 5, "score": 0.95},
            {"source": "manual.pdf", "page": 42, "score": 0.9},
        ]

    def test_no_answer(self):
        result = AnswerAssembler.no_answer("Nothing found", "no_match")

        assert result.found is False
        assert result.reason == "no_match"
        assert result.sources == []
        assert result.contexts_used == 0
