"""Tests for the translation service client."""

import json

import httpx
import pytest

from vpp.config.models import TranslationConfig
from vpp.errors import TranslationError
from vpp.services.translation import (
    STOP_TOKENS,
    TranslationClient,
    build_prompt,
    strip_list_prefix,
    strip_translation_preamble,
)


def _client(handler):
    config = TranslationConfig(languages=("cs",), llama_url="http://llama:8081/")
    return TranslationClient(config, transport=httpx.MockTransport(handler))


class TestStripping:
    @pytest.mark.parametrize(
        "text,expected",
        [("1. Ahoj", "Ahoj"), ("2) Ahoj", "Ahoj"), ("- Ahoj", "Ahoj"), ("Ahoj", "Ahoj")],
    )
    def test_strip_list_prefix(self, text, expected):
        assert strip_list_prefix(text) == expected

    def test_plain_answer_unchanged(self):
        assert strip_translation_preamble("  Dobrý den  ") == "Dobrý den"

    def test_preamble_reduced_to_first_option(self):
        answer = "Here are some options:\n\n1. Ahoj\n2. Nazdar"
        assert strip_translation_preamble(answer) == "Ahoj"

    def test_preamble_only(self):
        assert strip_translation_preamble("Here is the translation:") == ""


class TestBuildPrompt:
    def test_with_source_language(self):
        prompt = build_prompt("Hello\nthere", "cs", "en")

        assert "Translate the following English text to Czech." in prompt
        assert "Hello there<end_of_turn>" in prompt
        assert prompt.endswith("<start_of_turn>model\n")

    def test_without_source_language(self):
        assert "Translate the following to German." in build_prompt("Hi", "de")


class TestTranslationClient:
    """Tests for TranslationClient.translate."""

    def test_translate(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, json={"content": " Ahoj světe"})

        with _client(handler) as client:
            assert client.translate("Hello world", "cs", "en") == "Ahoj světe"

        assert seen["url"] == "http://llama:8081/completion"
        assert seen["payload"]["stop"] == STOP_TOKENS
        assert seen["payload"]["cache_prompt"] is True

    def test_error_status(self):
        def handler(request):
            return httpx.Response(503, text="loading model")

        with _client(handler) as client:
            with pytest.raises(TranslationError) as exc_info:
                client.translate("Hello", "cs")
        assert exc_info.value.status_code == 503

    def test_missing_content(self):
        def handler(request):
            return httpx.Response(200, json={"tokens": []})

        with _client(handler) as client:
            with pytest.raises(TranslationError, match="no 'content'"):
                client.translate("Hello", "cs")

    def test_empty_translation(self):
        def handler(request):
            return httpx.Response(200, json={"content": "Sure, here it is:"})

        with _client(handler) as client:
            with pytest.raises(TranslationError, match="Empty translation"):
                client.translate("Hello", "cs")

    def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        with _client(handler) as client:
            with pytest.raises(TranslationError, match="Invalid JSON"):
                client.translate("Hello", "cs")

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with _client(handler) as client:
            with pytest.raises(TranslationError, match="timed out"):
                client.translate("Hello", "cs")
