"""Client for a llama.cpp completion server used for subtitle translation.

The model is prompted with a Gemma-style chat template and asked for the
translation only. Models still occasionally answer with a preamble
("Here are some options:") followed by a list; strip_translation_preamble()
reduces such answers to the first option.
"""

from __future__ import annotations

import json
import logging
import re

import httpx

from vpp.config.models import TranslationConfig
from vpp.errors import TranslationError
from vpp.language import language_name

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = (
    "<start_of_turn>user\n"
    "Translate the following {source}to {target}. Output ONLY the translated "
    "text, no explanations or alternatives:\n"
    "{text}<end_of_turn>\n"
    "<start_of_turn>model\n"
)
STOP_TOKENS = ["<end_of_turn>", "<start_of_turn>", "\n\n"]
# Low but non-zero: deterministic enough for subtitles without looping
TEMPERATURE = 0.1
MAX_PREDICT_TOKENS = 1024

_LIST_PREFIX_RE = re.compile(r"^(?:\d+[.)]|[-*])\s+")


def strip_list_prefix(text: str) -> str:
    """Remove a leading list marker such as "1. ", "2) ", "- " or "* "."""
    text = text.strip()
    return _LIST_PREFIX_RE.sub("", text, count=1).strip()


def strip_translation_preamble(text: str) -> str:
    """Reduce a model answer to just the translation.

    If the first line ends with a colon it is treated as an introduction and
    the first following option is returned. An answer that is only an
    introduction yields an empty string.

    Examples:
        >>> strip_translation_preamble("Here is the translation:\\n1. Ahoj")
        'Ahoj'
        >>> strip_translation_preamble("Ahoj")
        'Ahoj'
    """
    trimmed = text.strip()
    first_line, _, rest = trimmed.partition("\n")
    if not first_line.rstrip().endswith(":"):
        return trimmed

    rest = rest.strip()
    if not rest:
        return ""
    first_option = strip_list_prefix(rest).splitlines()[0].strip()
    return first_option


def build_prompt(text: str, target_lang: str, source_lang: str | None = None) -> str:
    """Build the completion prompt for one cue.

    Cue line breaks are flattened; the model handles a single line more
    reliably.
    """
    source = f"{language_name(source_lang)} text " if source_lang else ""
    return PROMPT_TEMPLATE.format(
        source=source,
        target=language_name(target_lang),
        text=" ".join(text.split()),
    )


class TranslationClient:
    """HTTP client for the translation service."""

    def __init__(
        self,
        config: TranslationConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = config.llama_url.rstrip("/")
        self._timeout = config.timeout_secs
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> TranslationClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def translate(
        self, text: str, target_lang: str, source_lang: str | None = None
    ) -> str:
        """Translate one piece of subtitle text.

        Args:
            text: Source text.
            target_lang: Canonical target language code.
            source_lang: Canonical source language code, if known.

        Returns:
            The translated text, preamble removed.

        Raises:
            TranslationError: On transport failure, error status, malformed
                body or an empty answer.
        """
        payload = {
            "prompt": build_prompt(text, target_lang, source_lang),
            "n_predict": MAX_PREDICT_TOKENS,
            "temperature": TEMPERATURE,
            "stop": STOP_TOKENS,
            "cache_prompt": True,
        }

        client = self._get_client()
        try:
            response = client.post("/completion", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.ConnectError as e:
            raise TranslationError(f"Cannot connect to {self._base_url}: {e}") from e
        except httpx.TimeoutException as e:
            raise TranslationError(f"Request timed out after {self._timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise TranslationError(
                f"HTTP error: {e}", status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise TranslationError(f"Request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise TranslationError(f"Invalid JSON response: {e}") from e

        content = body.get("content") if isinstance(body, dict) else None
        if not isinstance(content, str):
            raise TranslationError("Response has no 'content' field")

        translated = strip_translation_preamble(content)
        if not translated:
            raise TranslationError("Empty translation")
        return translated
