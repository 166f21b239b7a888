"""Chapter markers exported as WebVTT."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from vpp.core.file_utils import atomic_output
from vpp.introspector.models import ChapterInfo
from vpp.subtitles.vtt import Cue, build_vtt

logger = logging.getLogger(__name__)

CHAPTERS_FILE = "chapters.vtt"


def chapter_cues(chapters: Iterable[ChapterInfo]) -> list[Cue]:
    """Cues for chapters that have a title; untitled chapters are skipped."""
    cues = []
    for chapter in chapters:
        title = (chapter.title or "").strip()
        if title:
            cues.append(Cue(start=chapter.start, end=chapter.end, text=title))
    return cues


def export_chapters(chapters: Iterable[ChapterInfo], workspace: Path) -> Path | None:
    """Write ``chapters.vtt`` into the workspace.

    Returns:
        The written file, or None if there were no titled chapters.
    """
    cues = chapter_cues(chapters)
    if not cues:
        return None
    path = workspace / CHAPTERS_FILE
    with atomic_output(path) as tmp:
        tmp.write_text(build_vtt(cues), encoding="utf-8")
    logger.info("Exported %d chapters to %s", len(cues), CHAPTERS_FILE)
    return path
