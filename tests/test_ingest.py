"""Tests for PDF reading, chunking and the ingest pipeline."""
import fitz
import pytest

from conftest import FakeEmbedder
from manual_qa.rag.chunker import TextChunk, TextChunker
from manual_qa.rag.ingest import IngestPipeline, filename_from_disposition
from manual_qa.rag.pdf_reader import PageText, PDFReader
from manual_qa.rag.vector_store import StoreState, VectorStore


class FakeReader:
    """Returns canned pages per file name; raises for names in ``broken``."""

    def __init__(self, pages_by_name, broken=()):
        self.pages_by_name = pages_by_name
        self.broken = set(broken)

    def read(self, path):
        if path.name in self.broken:
            raise RuntimeError("cannot open file")
        return [PageText(text=t, page=p, source=path.name) for p, t in self.pages_by_name[path.name]]


@pytest.fixture
def manual_dir(tmp_path):
    directory = tmp_path / "manual"
    directory.mkdir()
    return directory


class TestPDFReader:
    def test_reads_pages_with_numbers(self, tmp_path):
        path = tmp_path / "manual.pdf"
        doc = fitz.open()
        doc.new_page().insert_text((72, 72), "Game overview")
        doc.new_page()
        doc.new_page().insert_text((72, 72), "Robot rules")
        doc.save(str(path))
        doc.close()

        pages = PDFReader().read(path)

        assert [(p.page, p.source) for p in pages] == [(1, "manual.pdf"), (3, "manual.pdf")]
        assert "Game overview" in pages[0].text
        assert "Robot rules" in pages[1].text

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            PDFReader().read(tmp_path / "missing.pdf")


class TestTextChunker:
    def test_overlap_must_be_smaller_than_size(self):
        with pytest.raises(ValueError):
            TextChunker(chunk_size=100, chunk_overlap=100)

    def test_chunks_keep_page_and_global_index(self):
        chunker = TextChunker(chunk_size=50, chunk_overlap=10)
        pages = [
            PageText(text="Robots must fit in an 18 inch cube. " * 4, page=3, source="manual.pdf"),
            PageText(text="Short page.", page=4, source="manual.pdf"),
        ]

        chunks = chunker.chunk_pages(pages, start_index=5)

        assert len(chunks) > 2
        assert all(len(c.text) <= 50 for c in chunks)
        assert [c.chunk_index for c in chunks] == list(range(5, 5 + len(chunks)))
        assert chunks[-1].page == 4
        assert chunks[-1].text == "Short page."
        assert {c.page for c in chunks[:-1]} == {3}

    def test_size_stats(self):
        chunks = [TextChunk("aaaa", 1, 0, "m"), TextChunk("aa", 1, 1, "m")]

        assert TextChunker.size_stats(chunks) == {
            "chars_chunked": 6,
            "avg_chunk_size": 3,
            "min_chunk_size": 2,
            "max_chunk_size": 4,
        }
        assert set(TextChunker.size_stats([]).values()) == {0}


class TestIngestPipeline:
    async def test_run_rebuilds_store(self, manual_dir, store_path):
        (manual_dir / "a.pdf").touch()
        (manual_dir / "b.pdf").touch()
        (manual_dir / "notes.txt").touch()
        reader = FakeReader({
            "a.pdf": [(1, "Game overview."), (2, "Scoring rules.")],
            "b.pdf": [(7, "Robot inspection.")],
        })
        events = []
        store = VectorStore(path=store_path)

        pipeline = IngestPipeline(
            manual_dir=manual_dir,
            vector_store=store,
            embedder=FakeEmbedder(default=[1.0, 0.0]),
            reader=reader,
            chunker=TextChunker(chunk_size=200, chunk_overlap=20),
        )
        stats = await pipeline.run(on_event=events.append)

        assert stats == {
            "files_processed": 2,
            "files_failed": 0,
            "pages_read": 3,
            "chunks_created": 3,
            "chars_chunked": 45,
            "avg_chunk_size": 15,
            "min_chunk_size": 14,
            "max_chunk_size": 17,
            "embeddings_generated": 3,
            "vectors_stored": 3,
        }
        assert store.state is StoreState.READY
        assert store_path.exists()

        reloaded = await VectorStore(path=store_path).open()
        metadata = [r.metadata.as_dict() for r in reloaded.records()]
        assert [(m["source"], m["page"], m["chunkIndex"]) for m in metadata] == [
            ("a.pdf", 1, 0),
            ("a.pdf", 2, 1),
            ("b.pdf", 7, 2),
        ]
        assert {e.stage for e in events} == {"read", "embed", "store"}
        assert events[-1].stage == "store"
        assert events[-1].current == events[-1].total == 3

    async def test_failed_file_is_skipped(self, manual_dir, store_path):
        (manual_dir / "good.pdf").touch()
        (manual_dir / "bad.pdf").touch()
        pipeline = IngestPipeline(
            manual_dir=manual_dir,
            vector_store=VectorStore(path=store_path),
            embedder=FakeEmbedder(default=[1.0, 0.0]),
            reader=FakeReader({"good.pdf": [(1, "Text.")]}, broken={"bad.pdf"}),
            chunker=TextChunker(chunk_size=200, chunk_overlap=20),
        )

        stats = await pipeline.run()

        assert stats["files_failed"] == 1
        assert stats["vectors_stored"] == 1

    async def test_replaces_corrupt_snapshot(self, manual_dir, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("corrupt")
        (manual_dir / "a.pdf").touch()
        pipeline = IngestPipeline(
            manual_dir=manual_dir,
            vector_store=VectorStore(path=store_path),
            embedder=FakeEmbedder(default=[1.0, 0.0]),
            reader=FakeReader({"a.pdf": [(1, "Text.")]}),
            chunker=TextChunker(chunk_size=200, chunk_overlap=20),
        )

        await pipeline.run()

        assert len(await VectorStore(path=store_path).open()) == 1

    async def test_no_pdfs(self, manual_dir, store_path):
        pipeline = IngestPipeline(
            manual_dir=manual_dir,
            vector_store=VectorStore(path=store_path),
            embedder=FakeEmbedder(),
            reader=FakeReader({}),
            chunker=TextChunker(chunk_size=200, chunk_overlap=20),
        )

        with pytest.raises(FileNotFoundError):
            await pipeline.run()

    async def test_no_text(self, manual_dir, store_path):
        (manual_dir / "scan.pdf").touch()
        pipeline = IngestPipeline(
            manual_dir=manual_dir,
            vector_store=VectorStore(path=store_path),
            embedder=FakeEmbedder(),
            reader=FakeReader({"scan.pdf": []}),
            chunker=TextChunker(chunk_size=200, chunk_overlap=20),
        )

        with pytest.raises(RuntimeError):
            await pipeline.run()
        assert not store_path.exists()

    def test_build_records_length_mismatch(self):
        with pytest.raises(ValueError):
            IngestPipeline.build_records([TextChunk("a", 1, 0, "m")], [])


@pytest.mark.parametrize(
    "header,expected",
    [
        ('attachment; filename="game-manual.pdf"', "game-manual.pdf"),
        ("attachment; filename=manual-v2.pdf", "manual-v2.pdf"),
        ('attachment; filename="../../etc/evil.pdf"', "evil.pdf"),
        ("inline", "manual.pdf"),
        (None, "manual.pdf"),
    ],
)
def test_filename_from_disposition(header, expected):
    assert filename_from_disposition(header) == expected
