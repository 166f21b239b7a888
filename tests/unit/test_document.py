"""Tests for PDF document processing."""

import pytest
from conftest import FakeRunner, make_pdf
from pypdf.errors import PdfReadError

from vpp.config.models import PdfConfig
from vpp.core.tools import ToolPaths
from vpp.document import (
    DOCUMENT_FILE,
    TEXT_FILE,
    DocumentProcessor,
    extract_text,
    join_pages,
)
from vpp.errors import DocumentError
from vpp.picture import PICTURE_FILE, THUMBNAIL_AVIF, THUMBNAIL_JPG

TOOLS = ToolPaths(ffmpeg="ffmpeg", ffprobe="ffprobe", pdftoppm="pdftoppm")


class FakePage:
    def __init__(self, text):
        self.text = text

    def extract_text(self):
        return self.text


class FakeReader:
    texts: list = []

    def __init__(self, source):
        self.pages = [FakePage(text) for text in self.texts]


def _reader_with(*texts):
    return type("Reader", (FakeReader,), {"texts": list(texts)})


class TestJoinPages:
    def test_blank_pages_dropped(self):
        assert join_pages(["  Intro \n", "\n", "Body"]) == "Intro\n\n---\n\nBody"

    def test_no_text(self):
        assert join_pages(["", " "]) == ""


class TestExtractText:
    def test_pages_joined_in_order(self, temp_dir, monkeypatch):
        monkeypatch.setattr("vpp.document.PdfReader", _reader_with("One", None, "Two"))
        assert extract_text(temp_dir / "doc.pdf") == "One\n\n---\n\nTwo"

    def test_blank_document(self, temp_dir):
        source = make_pdf(temp_dir / "doc.pdf", pages=2)
        assert extract_text(source) == ""

    def test_no_pages(self, temp_dir, monkeypatch):
        monkeypatch.setattr("vpp.document.PdfReader", _reader_with())
        with pytest.raises(DocumentError, match="no pages"):
            extract_text(temp_dir / "doc.pdf")

    def test_unreadable(self, temp_dir, monkeypatch):
        def broken(source):
            raise PdfReadError("EOF marker not found")

        monkeypatch.setattr("vpp.document.PdfReader", broken)
        with pytest.raises(DocumentError, match="EOF marker"):
            extract_text(temp_dir / "doc.pdf")


class TestDocumentProcessor:
    """Tests for DocumentProcessor.process."""

    @pytest.fixture
    def source(self, temp_dir):
        return make_pdf(temp_dir / "upload")

    def test_writes_all_artifacts(self, temp_dir, source, limits):
        runner = FakeRunner()
        workspace = temp_dir / "out"

        report = DocumentProcessor(TOOLS, runner, PdfConfig(), limits).process(
            source, workspace, workspace / ".tmp"
        )

        assert [p.name for p in report.thumbnails] == [THUMBNAIL_AVIF, THUMBNAIL_JPG]
        assert report.text == workspace / TEXT_FILE
        assert (workspace / DOCUMENT_FILE).read_bytes() == source.read_bytes()
        assert not (workspace / PICTURE_FILE).exists()
        assert not (workspace / ".tmp" / "page.png").exists()

        render = runner.commands_with("pdftoppm")[0]
        assert render[render.index("-scale-to-x") + 1] == "2000"
        assert render[-1] == workspace / ".tmp" / "page"
        thumb = runner.commands_with("thumbnail.partial.jpg")[0]
        assert thumb[thumb.index("-i") + 1] == workspace / ".tmp" / "page.png"
        assert "scale=1280:720:force_original_aspect_ratio=decrease" in thumb

    def test_text_failure_is_not_fatal(self, temp_dir, source, limits, monkeypatch):
        def broken(source):
            raise DocumentError("cannot read")

        monkeypatch.setattr("vpp.document.extract_text", broken)
        workspace = temp_dir / "out"

        report = DocumentProcessor(TOOLS, FakeRunner(), PdfConfig(), limits).process(
            source, workspace, workspace / ".tmp"
        )

        assert report.text is None
        assert len(report.thumbnails) == 2
        assert (workspace / DOCUMENT_FILE).exists()

    def test_render_failure_raises(self, temp_dir, source, limits):
        runner = FakeRunner(fail_when=lambda args: args[0] == "pdftoppm")
        workspace = temp_dir / "out"

        with pytest.raises(DocumentError, match="Rendering upload failed"):
            DocumentProcessor(TOOLS, runner, PdfConfig(), limits).process(
                source, workspace, workspace / ".tmp"
            )
        assert not (workspace / DOCUMENT_FILE).exists()

    def test_missing_renderer(self, temp_dir, source, limits):
        tools = ToolPaths(ffmpeg="ffmpeg", ffprobe="ffprobe")
        workspace = temp_dir / "out"

        with pytest.raises(DocumentError, match="pdftoppm not found"):
            DocumentProcessor(tools, FakeRunner(), PdfConfig(), limits).process(
                source, workspace, workspace / ".tmp"
            )

    def test_existing_artifacts_kept(self, temp_dir, source, limits):
        workspace = temp_dir / "out"
        workspace.mkdir()
        for name in (THUMBNAIL_AVIF, THUMBNAIL_JPG, TEXT_FILE):
            (workspace / name).write_text("done", encoding="utf-8")
        runner = FakeRunner()

        DocumentProcessor(TOOLS, runner, PdfConfig(), limits).process(
            source, workspace, workspace / ".tmp"
        )

        assert runner.calls == []
        assert (workspace / TEXT_FILE).read_text(encoding="utf-8") == "done"
