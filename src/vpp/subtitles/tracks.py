"""Subtitle tracks registered for a job.

A job ends with at most one track per language. The registry enforces
first-registration-wins, and its order (which is also the order of
``list.txt``) is the order tracks were registered in.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

TRANSCRIBED_PREFIX = "AI_"
LIST_FILE = "list.txt"


class TrackOrigin(Enum):
    """Where a subtitle track came from."""

    EMBEDDED = "embedded"
    TRANSCRIBED = "transcribed"
    TRANSLATED = "translated"


@dataclass(frozen=True)
class SubtitleTrack:
    """A WebVTT file in the job's subtitles directory.

    Attributes:
        language: Canonical language code, or None for the generic
            transcription track and for embedded streams without a
            recognizable language tag.
        origin: How the track was produced.
        path: The WebVTT file.
    """

    language: str | None
    origin: TrackOrigin
    path: Path

    @property
    def name(self) -> str:
        """File stem, as listed in list.txt."""
        return self.path.stem

    @property
    def key(self) -> str:
        return self.language or self.name


def track_filename(
    language: str | None, origin: TrackOrigin, generic_label: str
) -> str:
    """File name for a track.

    Embedded and translated tracks are ``<lang>.vtt``; transcribed tracks
    are ``AI_<lang>.vtt``, or the generic label when there is no language.
    """
    if origin is TrackOrigin.TRANSCRIBED:
        if language is None:
            return f"{generic_label}.vtt"
        return f"{TRANSCRIBED_PREFIX}{language}.vtt"
    if language is None:
        raise ValueError(f"{origin.value} tracks need a language")
    return f"{language}.vtt"


class TrackRegistry:
    """Ordered, first-wins collection of subtitle tracks."""

    def __init__(self) -> None:
        self._tracks: dict[str, SubtitleTrack] = {}

    def register(self, track: SubtitleTrack) -> bool:
        """Add a track unless its language is already covered.

        Returns:
            True if the track was added.
        """
        if track.key in self._tracks:
            existing = self._tracks[track.key]
            logger.debug(
                "Ignoring %s track %s: %s already covered by %s",
                track.origin.value,
                track.path.name,
                track.key,
                existing.path.name,
            )
            return False
        self._tracks[track.key] = track
        logger.debug("Registered %s track %s", track.origin.value, track.path.name)
        return True

    def get(self, language: str) -> SubtitleTrack | None:
        return self._tracks.get(language)

    def first(self) -> SubtitleTrack | None:
        return next(iter(self._tracks.values()), None)

    def covers(self, language: str) -> bool:
        track = self._tracks.get(language)
        return track is not None and track.language is not None

    @property
    def tracks(self) -> list[SubtitleTrack]:
        return list(self._tracks.values())

    @property
    def languages(self) -> list[str]:
        return [t.language for t in self._tracks.values() if t.language is not None]

    def by_language(self) -> dict[str, SubtitleTrack]:
        return {t.key: t for t in self._tracks.values()}

    def __contains__(self, key: object) -> bool:
        return key in self._tracks

    def __iter__(self) -> Iterator[SubtitleTrack]:
        return iter(self.tracks)

    def __len__(self) -> int:
        return len(self._tracks)


def write_track_list(subtitles_dir: Path, registry: TrackRegistry) -> Path | None:
    """Write ``list.txt`` with one track name per line.

    Nothing is written when no track exists.
    """
    if not len(registry):
        return None
    path = subtitles_dir / LIST_FILE
    path.write_text("\n".join(t.name for t in registry), encoding="utf-8")
    logger.info("Wrote %s with %d entries", LIST_FILE, len(registry))
    return path
