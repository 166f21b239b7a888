"""Data types produced by media introspection."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StreamInfo:
    """One elementary stream as reported by ffprobe.

    Only the fields the pipeline reads are kept. ``index`` is the absolute
    stream index; ``type_index`` is the position among streams of the same
    type, which is what ffmpeg's ``0:s:N`` specifiers use.
    """

    index: int
    type_index: int
    codec_type: str
    codec_name: str | None = None
    language: str | None = None
    title: str | None = None
    duration: float | None = None
    nb_frames: int | None = None
    attached_pic: bool = False
    # Video
    width: int | None = None
    height: int | None = None
    frame_rate: float | None = None
    color_transfer: str | None = None
    color_primaries: str | None = None
    color_space: str | None = None
    # Audio
    channels: int | None = None
    bit_rate: int | None = None


@dataclass(frozen=True)
class ChapterInfo:
    start: float
    end: float
    title: str | None = None


@dataclass(frozen=True)
class ProbeResult:
    """Everything the pipeline needs to know about a source file."""

    path: str
    duration: float | None
    format_name: str | None = None
    streams: tuple[StreamInfo, ...] = ()
    chapters: tuple[ChapterInfo, ...] = field(default_factory=tuple)

    def streams_of(self, codec_type: str) -> list[StreamInfo]:
        return [s for s in self.streams if s.codec_type == codec_type]

    @property
    def video_streams(self) -> list[StreamInfo]:
        return self.streams_of("video")

    @property
    def audio_streams(self) -> list[StreamInfo]:
        return self.streams_of("audio")

    @property
    def subtitle_streams(self) -> list[StreamInfo]:
        return self.streams_of("subtitle")

    @property
    def primary_video(self) -> StreamInfo | None:
        """First video stream that is not embedded cover art.

        Falls back to the first video stream of any kind.
        """
        videos = self.video_streams
        for stream in videos:
            if not stream.attached_pic:
                return stream
        return videos[0] if videos else None
