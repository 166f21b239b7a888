"""PDF documents: first-page thumbnails and the extracted text.

The first page is rendered to PNG with pdftoppm and thumbnailed the same way
as a picture. Text is read page by page with pypdf into ``text.md``, pages
separated by a horizontal rule. Thumbnails are required; text is not.
"""

from __future__ import annotations

import logging
import shutil
import subprocess  # nosec B404 - only for TimeoutExpired
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from vpp.concurrency import ResourceLimits, get_limits
from vpp.config.models import PdfConfig
from vpp.core.file_utils import artifact_exists, atomic_output
from vpp.core.subprocess_utils import CommandRunner
from vpp.core.tools import ToolPaths
from vpp.errors import DocumentError
from vpp.logging import run_in_context
from vpp.picture import THUMBNAILS, PictureTranscoder

logger = logging.getLogger(__name__)

DOCUMENT_FILE = "document.pdf"
TEXT_FILE = "text.md"
PAGE_SEPARATOR = "\n\n---\n\n"
RENDER_TIMEOUT_SECS = 300


@dataclass
class DocumentReport:
    """Artifacts of a processed document."""

    thumbnails: list[Path] = field(default_factory=list)
    text: Path | None = None


def build_render_command(
    pdftoppm: str, source: Path, prefix: Path, render_width: int
) -> list[str | Path]:
    """pdftoppm invocation that writes the first page to ``<prefix>.png``."""
    return [
        pdftoppm, "-png", "-f", "1", "-l", "1", "-singlefile",
        "-scale-to-x", str(render_width), "-scale-to-y", "-1",
        source, prefix,
    ]


def join_pages(pages: list[str]) -> str:
    """Join page texts, dropping pages with no text."""
    return PAGE_SEPARATOR.join(text.strip() for text in pages if text.strip())


def extract_text(source: Path) -> str:
    """Read the text of every page of a PDF.

    Raises:
        DocumentError: The file cannot be parsed or has no pages.
    """
    try:
        reader = PdfReader(source)
        pages = [page.extract_text() or "" for page in reader.pages]
    except PyPdfError as e:
        raise DocumentError(f"Cannot read {source.name}: {e}") from e
    if not pages:
        raise DocumentError(f"{source.name} has no pages")
    logger.debug("Read text from %d page(s) of %s", len(pages), source.name)
    return join_pages(pages)


class DocumentProcessor:
    """Produces the artifact set of a PDF document."""

    def __init__(
        self,
        tools: ToolPaths,
        runner: CommandRunner,
        config: PdfConfig,
        limits: ResourceLimits | None = None,
    ) -> None:
        self._tools = tools
        self._runner = runner
        self._config = config
        self._limits = limits or get_limits()

    def process(self, source: Path, workspace: Path, tmp_dir: Path) -> DocumentReport:
        """Write thumbnails, ``text.md`` and a copy of the source.

        Thumbnails and text are produced concurrently. Existing artifacts
        are kept.

        Args:
            source: The uploaded PDF.
            workspace: Output directory.
            tmp_dir: Scratch directory for the rendered page.

        Returns:
            Report of the artifacts written; ``text`` is None when text
            extraction failed.

        Raises:
            DocumentError: The first page could not be rendered.
            EncodeError: A thumbnail could not be encoded.
        """
        report = DocumentReport()
        with ThreadPoolExecutor(max_workers=2) as pool:
            thumbnails = pool.submit(
                run_in_context(self.render_thumbnails), source, workspace, tmp_dir
            )
            text = pool.submit(run_in_context(self.write_text), source, workspace)
            try:
                report.text = text.result()
            except DocumentError as e:
                logger.warning("Text extraction failed for %s: %s", source.name, e)
            report.thumbnails = thumbnails.result()

        self.copy_source(source, workspace)
        return report

    def render_thumbnails(
        self, source: Path, workspace: Path, tmp_dir: Path
    ) -> list[Path]:
        targets = [workspace / name for name in THUMBNAILS]
        if all(artifact_exists(t) for t in targets):
            logger.info("Document thumbnails exist, skipping")
            return targets
        if self._tools.pdftoppm is None:
            raise DocumentError("pdftoppm not found in PATH; cannot render documents")

        tmp_dir.mkdir(parents=True, exist_ok=True)
        prefix = tmp_dir / "page"
        page = prefix.with_suffix(".png")
        args = build_render_command(
            self._tools.pdftoppm, source, prefix, self._config.render_width
        )
        try:
            with self._limits.external():
                result = self._runner.run(args, timeout=RENDER_TIMEOUT_SECS)
        except subprocess.TimeoutExpired as e:
            raise DocumentError(
                f"Rendering {source.name} timed out after {e.timeout}s"
            ) from e
        if not result.ok or not artifact_exists(page):
            detail = result.stderr_tail() if not result.ok else "no page written"
            raise DocumentError(f"Rendering {source.name} failed: {detail}")

        try:
            # The scale filter keeps the page's aspect ratio inside the box
            return PictureTranscoder(
                self._tools.ffmpeg, self._runner, self._config, self._limits
            ).transcode(page, workspace, 0, 0, names=THUMBNAILS)
        finally:
            page.unlink(missing_ok=True)

    def write_text(self, source: Path, workspace: Path) -> Path:
        target = workspace / TEXT_FILE
        if artifact_exists(target):
            return target
        text = extract_text(source)
        with atomic_output(target) as tmp:
            tmp.write_text(text, encoding="utf-8")
        logger.info("Wrote %s (%d characters)", target.name, len(text))
        return target

    def copy_source(self, source: Path, workspace: Path) -> Path:
        target = workspace / DOCUMENT_FILE
        if not artifact_exists(target):
            with atomic_output(target) as tmp:
                shutil.copyfile(source, tmp)
        return target
