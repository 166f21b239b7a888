"""Client for a Whisper-compatible transcription server.

Speaks the whisper.cpp ``/inference`` (and OpenAI-style) multipart API:
the audio file is uploaded together with model and decoding options, and
the server answers with WebVTT or with verbose JSON that also carries the
detected language.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from vpp.config.models import WhisperConfig
from vpp.errors import TranscriptionError
from vpp.language import normalize_language
from vpp.subtitles.vtt import Cue, parse_vtt

logger = logging.getLogger(__name__)

VERBOSE_FORMAT = "verbose_json"


@dataclass(frozen=True)
class TranscriptionResult:
    """Transcript of one audio chunk."""

    cues: list[Cue] = field(default_factory=list)
    language: str | None = None


def parse_verbose_response(data: dict[str, Any]) -> TranscriptionResult:
    """Parse a ``verbose_json`` response body.

    Segments without text are skipped. The language may be a code or an
    English name depending on the server; it is normalized either way.
    """
    cues: list[Cue] = []
    for segment in data.get("segments") or []:
        text = str(segment.get("text") or "").strip()
        if not text:
            continue
        try:
            start = float(segment["start"])
            end = float(segment["end"])
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping segment without timing: %s", segment)
            continue
        cues.append(Cue(start=start, end=max(end, start), text=text))

    return TranscriptionResult(
        cues=cues, language=normalize_language(data.get("language"))
    )


class WhisperClient:
    """HTTP client for the transcription service."""

    def __init__(
        self,
        config: WhisperConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Transcription settings.
            transport: Optional httpx transport, used by tests.
        """
        self._config = config
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(transport=self._transport)
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> WhisperClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def transcribe(
        self, audio_path: Path, timeout: float, detect_language: bool = False
    ) -> TranscriptionResult:
        """Transcribe one audio file.

        Args:
            audio_path: WAV file to upload.
            timeout: Seconds allowed for each phase of the request: connect,
                every write of the upload and every read of the response.
                It bounds a stalled transfer, not the total request time.
            detect_language: Request verbose output so the detected
                language is returned.

        Returns:
            Cues relative to the start of the file, plus the language when
            it was requested and reported.

        Raises:
            TranscriptionError: On connection failure, timeout, error
                status or an unparseable body.
        """
        response_format = VERBOSE_FORMAT if detect_language else self._config.response_format
        data = {
            "model": self._config.model,
            "temperature": f"{self._config.temperature:g}",
            "response_format": response_format,
        }

        client = self._get_client()
        try:
            with audio_path.open("rb") as audio:
                response = client.post(
                    self._config.url,
                    data=data,
                    files={"file": (audio_path.name, audio, "audio/wav")},
                    timeout=timeout,
                )
            response.raise_for_status()
        except OSError as e:
            raise TranscriptionError(f"Cannot read {audio_path}: {e}") from e
        except httpx.ConnectError as e:
            raise TranscriptionError(f"Cannot connect to {self._config.url}: {e}") from e
        except httpx.TimeoutException as e:
            raise TranscriptionError(f"Request timed out after {timeout:.0f}s") from e
        except httpx.HTTPStatusError as e:
            raise TranscriptionError(
                f"HTTP error: {e}", status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Request failed: {e}") from e

        if response_format == VERBOSE_FORMAT:
            try:
                body = response.json()
            except json.JSONDecodeError as e:
                raise TranscriptionError(f"Invalid JSON response: {e}") from e
            if not isinstance(body, dict):
                raise TranscriptionError("Unexpected JSON response shape")
            result = parse_verbose_response(body)
        else:
            result = TranscriptionResult(cues=parse_vtt(response.text))

        logger.debug(
            "Transcribed %s: %d cues, language=%s",
            audio_path.name,
            len(result.cues),
            result.language,
        )
        return result
