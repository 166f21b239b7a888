"""Shared test fixtures for the media processor."""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Any

import pytest
from pypdf import PdfWriter

from vpp.concurrency import ResourceLimits
from vpp.config import ProcessorConfig, build_config
from vpp.core.subprocess_utils import CommandResult

BASE_CONFIG: dict[str, Any] = {
    "video": {
        "encoder": "nvenc",
        "nvenc": {"codec": "av1_nvenc", "preset": "p5", "cq": 30},
        "quality_steps": [
            {"label": "original", "scale_divisor": 1, "audio_bitrate_divisor": 1},
            {"label": "half_resolution", "scale_divisor": 2, "audio_bitrate_divisor": 2},
            {
                "label": "quarter_resolution",
                "scale_divisor": 4,
                "audio_bitrate_divisor": 3,
            },
            {"label": "eighth_resolution", "scale_divisor": 8, "audio_bitrate_divisor": 4},
        ],
    },
}

MINIMAL_MPD = """<?xml version="1.0" encoding="utf-8"?>
<MPD xmlns="urn:mpeg:dash:schema:mpd:2011">
\t<Period id="0" start="PT0.0S">
\t\t<AdaptationSet id="0" contentType="video" mimeType="video/webm">
\t\t</AdaptationSet>
\t</Period>
</MPD>
"""


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def make_config(**sections: dict[str, Any]) -> ProcessorConfig:
    """Build a validated configuration, deep-merging sections over the base."""
    return build_config(_merge(BASE_CONFIG, sections))


def make_stream(codec_type: str, index: int, **fields: Any) -> dict[str, Any]:
    """Build one ffprobe stream dict."""
    stream: dict[str, Any] = {"index": index, "codec_type": codec_type}
    tags = {}
    for key in ("language", "title"):
        if key in fields:
            tags[key] = fields.pop(key)
    if tags:
        stream["tags"] = tags
    if fields.pop("attached_pic", False):
        stream["disposition"] = {"attached_pic": 1}
    stream.update(fields)
    return stream


def make_ffprobe_data(
    video: dict[str, Any] | None = None,
    audio: list[dict[str, Any]] | None = None,
    subtitles: list[dict[str, Any]] | None = None,
    duration: float | None = 120.0,
    chapters: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build ffprobe JSON output for a synthetic file.

    Args:
        video: Extra fields of the single video stream, or None for no video.
        audio: Extra fields of each audio stream.
        subtitles: Extra fields of each subtitle stream.
        duration: Container duration.
        chapters: Raw ffprobe chapter dicts.
    """
    streams = []
    if video is not None:
        fields = {
            "codec_name": "h264",
            "width": 1920,
            "height": 1080,
            "avg_frame_rate": "30/1",
            **video,
        }
        streams.append(make_stream("video", len(streams), **fields))
    for extra in audio or []:
        streams.append(make_stream("audio", len(streams), **{"codec_name": "aac", **extra}))
    for extra in subtitles or []:
        streams.append(
            make_stream("subtitle", len(streams), **{"codec_name": "subrip", **extra})
        )
    data: dict[str, Any] = {"streams": streams, "format": {"format_name": "matroska"}}
    if duration is not None:
        data["format"]["duration"] = f"{duration:.3f}"
    if chapters:
        data["chapters"] = chapters
    return data


def make_pdf(path: Path, pages: int = 1) -> Path:
    """Write a PDF of blank letter-size pages."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    with path.open("wb") as f:
        writer.write(f)
    return path


def _fake_content(path: Path) -> str:
    name = path.name
    if name.endswith(".vtt"):
        return "WEBVTT\n\n00:00:00.000 --> 00:00:01.000\nHello\n"
    if name.endswith(".mpd"):
        return MINIMAL_MPD
    return "media"


class FakeRunner:
    """Recording CommandRunner that pretends every tool succeeds.

    ffprobe calls return ``probe_data`` as JSON. pdftoppm calls write
    ``<prefix>.png`` for their last argument. Any other call writes every
    Path argument that is not an input (not preceded by ``-i``), which is
    how the pipeline passes output files.

    Attributes:
        calls: Argument lists of every run() call, in order.
    """

    def __init__(
        self,
        probe_data: dict[str, Any] | None = None,
        fail_when=None,
        stderr: str = "",
    ) -> None:
        self.calls: list[list[Any]] = []
        self.probe_data = probe_data
        self.fail_when = fail_when
        self.stderr = stderr

    def run(self, args, timeout=None) -> CommandResult:
        self.calls.append(list(args))
        if Path(str(args[0])).name == "ffprobe":
            return CommandResult(json.dumps(self.probe_data or {}), "", 0)
        if self.fail_when is not None and self.fail_when(args):
            return CommandResult("", "Error while encoding\nConversion failed!\n", 1)
        if Path(str(args[0])).name == "pdftoppm":
            Path(f"{args[-1]}.png").write_text("page", encoding="utf-8")
            return CommandResult("", self.stderr, 0)
        previous = None
        for arg in args:
            if isinstance(arg, Path) and previous != "-i":
                arg.parent.mkdir(parents=True, exist_ok=True)
                arg.write_text(_fake_content(arg), encoding="utf-8")
            previous = arg
        return CommandResult("", self.stderr, 0)

    def commands_with(self, needle: str) -> list[list[Any]]:
        """Calls whose arguments contain needle as a substring."""
        return [c for c in self.calls if any(needle in str(a) for a in c)]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test isolation."""
    dir_path = tempfile.mkdtemp()
    yield Path(dir_path)
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture
def config() -> ProcessorConfig:
    """Default valid configuration (NVENC, four-step ladder)."""
    return make_config()


@pytest.fixture
def limits() -> ResourceLimits:
    return ResourceLimits(encoder_slots=1, external_slots=4)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()
