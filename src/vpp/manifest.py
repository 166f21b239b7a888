"""DASH manifest assembly.

Ladder encodes are video-only. Audio is encoded here, once per source
audio stream and distinct ladder bitrate, and everything is packaged with
a single ``-c copy`` run of ffmpeg's dash muxer:

- adaptation set 0 holds every ladder output that exists on disk
- each source audio stream gets its own adaptation set whose
  representations are its bitrates

The manifest is written to ``manifest.mpd`` in the workspace with all
segments under ``video/``. A step whose encode failed is left out; with no
ladder output at all the job fails.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess  # nosec B404 - only for TimeoutExpired
from collections import Counter
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from xml.sax.saxutils import escape

from vpp.concurrency import ResourceLimits, get_limits
from vpp.config.models import DashConfig
from vpp.core.file_utils import artifact_exists, atomic_output, partial_path
from vpp.core.subprocess_utils import CommandRunner
from vpp.errors import ManifestError
from vpp.introspector.models import StreamInfo
from vpp.ladder import QualityStep
from vpp.logging import run_in_context

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.mpd"
PREVIEW_FILE = "video.webm"
PREVIEW_STEP_LABEL = "quarter_resolution"
VIDEO_DIR = "video"
PACKAGE_TIMEOUT_SECS = 3600
AUDIO_TIMEOUT_SECS = 3600
DASH_ROLE_SCHEME = "urn:mpeg:dash:role:2011"

_AUDIO_SET_RE = re.compile(r'^([ \t]*)(<AdaptationSet\b[^>]*contentType="audio"[^>]*>)', re.M)
_COMMENTARY_WORDS = ("commentary", "komentář")


@dataclass(frozen=True)
class AudioRendition:
    """One encoded bitrate of one source audio stream."""

    position: int
    bitrate_kbps: int
    path: Path
    language: str | None = None
    title: str | None = None


@dataclass
class ManifestResult:
    manifest: Path
    video_outputs: list[Path] = field(default_factory=list)
    audio_sets: list[list[AudioRendition]] = field(default_factory=list)
    preview: Path | None = None


def audio_bitrates(steps: Sequence[QualityStep]) -> list[int]:
    """Distinct audio bitrates of the ladder, highest first."""
    return sorted({s.audio_bitrate_kbps for s in steps}, reverse=True)


def audio_rendition_path(video_dir: Path, position: int, bitrate_kbps: int) -> Path:
    return video_dir / f"audio_{position}_{bitrate_kbps}k.webm"


def build_audio_command(
    ffmpeg: str,
    source: Path,
    rendition: AudioRendition,
    dash: DashConfig,
    output: Path,
) -> list[str | Path]:
    args: list[str | Path] = [
        ffmpeg, "-nostdin", "-y", "-hide_banner",
        "-i", source,
        "-map", f"0:a:{rendition.position}",
        "-c:a", dash.audio_codec,
        "-b:a", f"{rendition.bitrate_kbps}k",
        "-vbr", dash.audio_vbr,
        "-ac", str(dash.audio_channels),
        "-vn", "-sn", "-dn",
    ]
    if rendition.language:
        args += ["-metadata:s:a:0", f"language={rendition.language}"]
    if rendition.title:
        args += ["-metadata:s:a:0", f"title={rendition.title}"]
    args += ["-f", "webm", output]
    return args


def build_adaptation_sets(video_count: int, audio_sets: Sequence[Sequence[object]]) -> str:
    """The dash muxer's ``-adaptation_sets`` value.

    Examples:
        >>> build_adaptation_sets(3, [["a", "b"], ["c"]])
        'id=0,streams=v id=1,streams=3,4 id=2,streams=5'
    """
    parts = ["id=0,streams=v"]
    index = video_count
    for set_id, renditions in enumerate(audio_sets, start=1):
        streams = ",".join(str(index + i) for i in range(len(renditions)))
        parts.append(f"id={set_id},streams={streams}")
        index += len(renditions)
    return " ".join(parts)


def build_dash_command(
    ffmpeg: str,
    videos: Sequence[Path],
    audio_sets: Sequence[Sequence[AudioRendition]],
    dash: DashConfig,
    output: Path,
) -> list[str | Path]:
    """Packaging command; output is the manifest path."""
    args: list[str | Path] = [
        ffmpeg, "-nostdin", "-y", "-hide_banner",
        "-analyzeduration", "100M", "-probesize", "100M",
    ]
    renditions = [r for group in audio_sets for r in group]
    for path in [*videos, *(r.path for r in renditions)]:
        args += ["-i", path]
    for i in range(len(videos)):
        args += ["-map", f"{i}:v:0"]
    for i in range(len(renditions)):
        args += ["-map", f"{len(videos) + i}:a:0"]
    for i, rendition in enumerate(renditions):
        if rendition.language:
            args += [f"-metadata:s:{len(videos) + i}", f"language={rendition.language}"]

    args += [
        "-c", "copy", "-map_metadata", "-1",
        "-f", "dash",
        "-dash_segment_type", "webm",
        "-use_timeline", "0",
        "-use_template", "1",
        "-frag_duration", str(dash.segment_duration),
        "-adaptation_sets", build_adaptation_sets(len(videos), audio_sets),
        "-window_size", "0",
        "-extra_window_size", "0",
        "-streaming", "0",
        "-fflags", "+genpts",
        "-avoid_negative_ts", "make_zero",
        "-index_correction", "0",
        "-init_seg_name", f"{VIDEO_DIR}/init_$RepresentationID$.webm",
        "-media_seg_name", f"{VIDEO_DIR}/chunk_$RepresentationID$_$Number$.webm",
        output,
    ]
    return args


def audio_labels(tracks: Sequence[tuple[str | None, str | None]]) -> list[str]:
    """Player-facing labels for audio tracks.

    Title, else language, else "Track". Repeated labels get a counter from
    the second occurrence on: "en", "en (2)", "en (3)".
    """
    raw = [title or language or "Track" for language, title in tracks]
    totals = Counter(raw)
    seen: Counter[str] = Counter()
    labels = []
    for label in raw:
        seen[label] += 1
        if totals[label] > 1 and seen[label] > 1:
            labels.append(f"{label} ({seen[label]})")
        else:
            labels.append(label)
    return labels


def label_audio_sets(mpd: str, tracks: Sequence[tuple[str | None, str | None]]) -> str:
    """Insert ``<Label>`` and ``<Role>`` into the audio adaptation sets.

    A track whose title mentions commentary gets the commentary role; with
    several tracks the first one is marked main.
    """
    labels = audio_labels(tracks)
    position = 0

    def insert(match: re.Match[str]) -> str:
        nonlocal position
        if position >= len(tracks):
            return match.group(0)
        indent, tag = match.group(1), match.group(2)
        child = indent + "  "
        _, title = tracks[position]
        lines = [f"{indent}{tag}", f"{child}<Label>{escape(labels[position])}</Label>"]
        if title and any(word in title.lower() for word in _COMMENTARY_WORDS):
            lines.append(f'{child}<Role schemeIdUri="{DASH_ROLE_SCHEME}" value="commentary"/>')
        elif len(tracks) > 1 and position == 0:
            lines.append(f'{child}<Role schemeIdUri="{DASH_ROLE_SCHEME}" value="main"/>')
        position += 1
        return "\n".join(lines)

    result = _AUDIO_SET_RE.sub(insert, mpd)
    if position != len(tracks):
        logger.warning(
            "Expected %d audio adaptation sets in manifest, found %d",
            len(tracks),
            position,
        )
    return result


def select_preview_source(outputs: Sequence[tuple[QualityStep, Path]]) -> Path | None:
    """The quarter-resolution output, else the middle one."""
    for step, path in outputs:
        if step.label == PREVIEW_STEP_LABEL:
            return path
    if not outputs:
        return None
    return outputs[len(outputs) // 2][1]


class ManifestAssembler:
    """Encodes DASH audio and packages the ladder into a manifest."""

    def __init__(
        self,
        ffmpeg: str,
        runner: CommandRunner,
        dash: DashConfig,
        limits: ResourceLimits | None = None,
    ) -> None:
        self._ffmpeg = ffmpeg
        self._runner = runner
        self._dash = dash
        self._limits = limits or get_limits()

    def _encode_rendition(self, source: Path, rendition: AudioRendition) -> bool:
        if artifact_exists(rendition.path):
            return True
        with atomic_output(rendition.path) as tmp:
            try:
                with self._limits.external():
                    result = self._runner.run(
                        build_audio_command(self._ffmpeg, source, rendition, self._dash, tmp),
                        timeout=AUDIO_TIMEOUT_SECS,
                    )
            except subprocess.TimeoutExpired:
                logger.warning("Audio encode %s timed out", rendition.path.name)
                tmp.unlink(missing_ok=True)
                return False
            if not result.ok:
                logger.warning(
                    "Audio encode %s failed: %s", rendition.path.name, result.stderr_tail()
                )
                tmp.unlink(missing_ok=True)
                return False
        return artifact_exists(rendition.path)

    def encode_audio(
        self,
        source: Path,
        audio_streams: Sequence[StreamInfo],
        bitrates: Sequence[int],
        video_dir: Path,
    ) -> list[list[AudioRendition]]:
        """Encode every audio stream at every bitrate.

        Renditions that fail are left out; a stream with no rendition left
        gets no adaptation set.
        """
        planned = [
            [
                AudioRendition(
                    position=stream.type_index,
                    bitrate_kbps=bitrate,
                    path=audio_rendition_path(video_dir, stream.type_index, bitrate),
                    language=stream.language,
                    title=stream.title,
                )
                for bitrate in bitrates
            ]
            for stream in audio_streams
        ]
        flat = [r for group in planned for r in group]
        if not flat:
            return []

        with ThreadPoolExecutor(max_workers=min(len(flat), self._limits.external_slots)) as pool:
            ok = dict(
                zip(
                    flat,
                    pool.map(run_in_context(lambda r: self._encode_rendition(source, r)), flat),
                )
            )

        sets = [[r for r in group if ok[r]] for group in planned]
        encoded = [group for group in sets if group]
        if len(encoded) != len(audio_streams):
            logger.warning(
                "Only %d of %d audio streams could be encoded for DASH",
                len(encoded),
                len(audio_streams),
            )
        return encoded

    def assemble(
        self,
        outputs: Sequence[tuple[QualityStep, Path]],
        workspace: Path,
        source: Path | None = None,
        audio_streams: Sequence[StreamInfo] = (),
        refresh: bool = True,
    ) -> ManifestResult:
        """Package the existing ladder outputs.

        Args:
            outputs: Planned (step, output path) pairs, ladder order.
            workspace: Job workspace; the manifest goes to its root.
            source: Source file for audio, or None for a silent manifest.
            audio_streams: Source audio streams to include.
            refresh: Package even when a manifest already exists. Callers
                pass False when no ladder output changed since the last run.

        Raises:
            ManifestError: No ladder output exists or packaging failed.
        """
        present = [(step, path) for step, path in outputs if artifact_exists(path)]
        if not present:
            raise ManifestError("No quality step produced an output")
        missing = [step.label for step, path in outputs if not artifact_exists(path)]
        if missing:
            logger.warning("Packaging without failed steps: %s", ", ".join(missing))

        video_dir = workspace / VIDEO_DIR
        video_dir.mkdir(parents=True, exist_ok=True)
        manifest = workspace / MANIFEST_FILE
        videos = [path for _, path in present]
        if not refresh and artifact_exists(manifest):
            logger.info("%s is up to date, skipping packaging", MANIFEST_FILE)
            return ManifestResult(
                manifest=manifest,
                video_outputs=videos,
                preview=self.copy_preview(present, video_dir),
            )

        audio_sets: list[list[AudioRendition]] = []
        if source is not None and audio_streams:
            audio_sets = self.encode_audio(
                source,
                audio_streams,
                audio_bitrates([step for step, _ in present]),
                video_dir,
            )

        self._package(videos, audio_sets, manifest)

        tracks = [(group[0].language, group[0].title) for group in audio_sets]
        if len(tracks) > 1 or any(title for _, title in tracks):
            manifest.write_text(
                label_audio_sets(manifest.read_text(encoding="utf-8"), tracks),
                encoding="utf-8",
            )

        logger.info(
            "Wrote %s: %d video and %d audio representation(s)",
            MANIFEST_FILE,
            len(videos),
            sum(len(group) for group in audio_sets),
        )
        return ManifestResult(
            manifest=manifest,
            video_outputs=videos,
            audio_sets=audio_sets,
            preview=self.copy_preview(present, video_dir),
        )

    def _package(
        self,
        videos: list[Path],
        audio_sets: list[list[AudioRendition]],
        manifest: Path,
    ) -> None:
        tmp = partial_path(manifest)
        tmp.unlink(missing_ok=True)
        args = build_dash_command(self._ffmpeg, videos, audio_sets, self._dash, tmp)
        try:
            with self._limits.external():
                result = self._runner.run(args, timeout=PACKAGE_TIMEOUT_SECS)
        except subprocess.TimeoutExpired as e:
            tmp.unlink(missing_ok=True)
            raise ManifestError("DASH packaging timed out") from e
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        if not result.ok or not artifact_exists(tmp):
            tmp.unlink(missing_ok=True)
            raise ManifestError(f"DASH packaging failed: {result.stderr_tail()}")
        os.replace(tmp, manifest)

    def copy_preview(
        self, present: Sequence[tuple[QualityStep, Path]], video_dir: Path
    ) -> Path | None:
        """Copy the preview rendition to ``video/video.webm`` if missing."""
        target = video_dir / PREVIEW_FILE
        if artifact_exists(target):
            return target
        source = select_preview_source(present)
        if source is None:
            return None
        with atomic_output(target) as tmp:
            shutil.copyfile(source, tmp)
        logger.info("Preview clip copied from %s", source.name)
        return target
