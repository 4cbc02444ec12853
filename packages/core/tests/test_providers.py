"""Tests for LLM provider implementations.

Shared behaviour (ask, _call_with_retry) lives in BaseProvider and is tested
once via a lightweight stub, not duplicated per provider. Provider-specific
tests cover only what differs between families: request shape, response
conversion and error mapping.
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

from repolens_core.config import ProviderSettings, SensitiveSettings, ServiceSettings
from repolens_core.exceptions import (
    ConfigurationError,
    ProviderError,
    ProviderTimeoutError,
    TransientProviderError,
)
from repolens_core.prompts import Message, Prompt, Role
from repolens_core.providers.base import BaseProvider, Choice, ProviderResponse, RequestKind
from repolens_core.providers.gemini import GeminiProvider, build_contents, check_status, to_provider_response
from repolens_core.providers.lmstudio import LMStudioProvider
from repolens_core.providers.openai import SEED_VAL, OpenAIProvider, sdk_base_url
from repolens_core.providers.vertex import JsonArrayStream, VertexProvider

PROMPT = Prompt(
    messages=(
        Message(Role.SYSTEM, "You are a reviewer."),
        Message(Role.USER, "File name: a.py\nprint(1)\n"),
    )
)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1/models/{model}:generateContent"
VERTEX_URL = (
    "https://{region}-aiplatform.googleapis.com/v1/projects/{project_id}"
    "/locations/{region}/publishers/google/models/{model}:streamGenerateContent"
)


def make_settings(name="openai", model="gpt-4o", max_retries=0, api_url="https://api.openai.com/v1/chat/completions", **kw):
    return ProviderSettings(
        name=name,
        services=[ServiceSettings(name="svc", model=model)],
        default_service="svc",
        api_url=api_url,
        max_retries=max_retries,
        **kw,
    )


def make_sensitive(**kw):
    values = {"api_key": "secret", "project_id": "proj"}
    values.update(kw)
    return SensitiveSettings(**values)


def ok(content="{}"):
    return ProviderResponse(id="r1", model="m", choices=[Choice(content=content)])


class _StubProvider(BaseProvider):
    """Minimal concrete subclass that replays a scripted list of outcomes."""

    NAME = "stub"

    def __init__(self, outcomes, max_retries=0):
        super().__init__(make_settings(name="stub", max_retries=max_retries), make_sensitive())
        self.outcomes = list(outcomes)
        self.calls = 0

    def _call_api(self, kind, prompt):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def openai_completion(*contents, model="gpt-4o"):
    return MagicMock(
        id="chatcmpl-1",
        model=model,
        choices=[MagicMock(message=MagicMock(content=c)) for c in contents],
    )


def openai_status_error(status):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.APIStatusError("failed", response=httpx.Response(status, request=request), body=None)


# ---------------------------------------------------------------------------
# Shared behaviour, tested once through the stub, not per provider
# ---------------------------------------------------------------------------


class TestProviderResponse:
    def test_content_is_first_choice(self):
        response = ProviderResponse(id="", model="m", choices=[Choice("a"), Choice("b")])
        assert response.content == "a"

    def test_content_empty_without_choices(self):
        assert ProviderResponse(id="", model="m").content == ""


class TestBaseProviderRetry:
    def test_returns_on_first_success(self):
        provider = _StubProvider([ok("done")])
        assert provider.ask(RequestKind.REVIEW, PROMPT).content == "done"
        assert provider.calls == 1

    def test_identity_names_provider_and_model(self):
        assert _StubProvider([]).identity == "stub/gpt-4o"

    @patch("repolens_core.providers.base.time.sleep")
    def test_retries_transient_error_with_backoff(self, mock_sleep):
        provider = _StubProvider(
            [TransientProviderError("502"), ProviderTimeoutError("slow"), ok("done")],
            max_retries=2,
        )
        assert provider.ask(RequestKind.REVIEW, PROMPT).content == "done"
        assert provider.calls == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]

    @patch("repolens_core.providers.base.time.sleep")
    def test_raises_after_all_attempts_exhausted(self, mock_sleep):
        provider = _StubProvider([TransientProviderError("502")] * 3, max_retries=2)
        with pytest.raises(TransientProviderError):
            provider.ask(RequestKind.REVIEW, PROMPT)
        assert provider.calls == 3

    @patch("repolens_core.providers.base.time.sleep")
    def test_no_retry_when_max_retries_is_zero(self, mock_sleep):
        provider = _StubProvider([TransientProviderError("502"), ok()])
        with pytest.raises(TransientProviderError):
            provider.ask(RequestKind.REVIEW, PROMPT)
        assert provider.calls == 1
        mock_sleep.assert_not_called()

    @patch("repolens_core.providers.base.time.sleep")
    def test_non_transient_error_surfaces_immediately(self, mock_sleep):
        provider = _StubProvider([ProviderError("401", status_code=401), ok()], max_retries=3)
        with pytest.raises(ProviderError) as exc_info:
            provider.ask(RequestKind.REVIEW, PROMPT)
        assert exc_info.value.status_code == 401
        assert provider.calls == 1
        mock_sleep.assert_not_called()


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


class TestSdkBaseUrl:
    def test_strips_chat_completions(self):
        assert sdk_base_url("https://api.openai.com/v1/chat/completions") == "https://api.openai.com/v1"

    def test_strips_trailing_slash(self):
        assert sdk_base_url("http://localhost:1234/v1/chat/completions/") == "http://localhost:1234/v1"

    def test_leaves_base_url_alone(self):
        assert sdk_base_url("https://example.com/v1") == "https://example.com/v1"


class TestOpenAIProvider:
    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError, match="api_key"):
            OpenAIProvider(make_settings(), make_sensitive(api_key=""))

    def test_builds_sdk_client_from_settings(self):
        provider = OpenAIProvider(make_settings(), make_sensitive(org_id="org-1"))
        assert str(provider.client.base_url).rstrip("/") == "https://api.openai.com/v1"
        assert provider.client.organization == "org-1"
        assert provider.client.max_retries == 0

    def test_converts_all_choices(self):
        client = MagicMock()
        client.chat.completions.create.return_value = openai_completion("first", "second")
        provider = OpenAIProvider(make_settings(), make_sensitive(), client=client)

        response = provider.ask(RequestKind.REVIEW, PROMPT)

        assert response.id == "chatcmpl-1"
        assert [c.content for c in response.choices] == ["first", "second"]
        assert response.content == "first"

    def test_sends_messages_in_order(self):
        client = MagicMock()
        client.chat.completions.create.return_value = openai_completion("{}")
        OpenAIProvider(make_settings(), make_sensitive(), client=client).ask(RequestKind.REVIEW, PROMPT)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["messages"] == PROMPT.to_dicts()

    def test_plain_model_gets_no_seed(self):
        client = MagicMock()
        client.chat.completions.create.return_value = openai_completion("{}")
        OpenAIProvider(make_settings(), make_sensitive(), client=client).ask(RequestKind.REVIEW, PROMPT)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert "seed" not in kwargs
        assert "response_format" not in kwargs

    def test_preview_model_review_gets_seed_and_json_mode(self):
        client = MagicMock()
        client.chat.completions.create.return_value = openai_completion("{}")
        settings = make_settings(model="gpt-4-turbo-preview")
        OpenAIProvider(settings, make_sensitive(), client=client).ask(RequestKind.REVIEW, PROMPT)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["seed"] == SEED_VAL
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_turbo_model_summary_gets_seed_only(self):
        client = MagicMock()
        client.chat.completions.create.return_value = openai_completion("summary")
        settings = make_settings(model="gpt-3.5-turbo")
        OpenAIProvider(settings, make_sensitive(), client=client).ask(RequestKind.SUMMARISE, PROMPT)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["seed"] == SEED_VAL
        assert "response_format" not in kwargs

    def test_max_tokens_passed_when_configured(self):
        client = MagicMock()
        client.chat.completions.create.return_value = openai_completion("{}")
        settings = make_settings(max_tokens=512)
        OpenAIProvider(settings, make_sensitive(), client=client).ask(RequestKind.REVIEW, PROMPT)

        assert client.chat.completions.create.call_args.kwargs["max_tokens"] == 512

    def test_bad_gateway_is_transient(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = openai_status_error(502)
        provider = OpenAIProvider(make_settings(), make_sensitive(), client=client)

        with pytest.raises(TransientProviderError) as exc_info:
            provider.ask(RequestKind.REVIEW, PROMPT)
        assert exc_info.value.status_code == 502

    def test_other_status_is_fatal_with_code(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = openai_status_error(401)
        provider = OpenAIProvider(make_settings(), make_sensitive(), client=client)

        with pytest.raises(ProviderError) as exc_info:
            provider.ask(RequestKind.REVIEW, PROMPT)
        assert not isinstance(exc_info.value, TransientProviderError)
        assert exc_info.value.status_code == 401

    def test_timeout_maps_to_typed_error(self):
        client = MagicMock()
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        client.chat.completions.create.side_effect = openai.APITimeoutError(request=request)
        provider = OpenAIProvider(make_settings(), make_sensitive(), client=client)

        with pytest.raises(ProviderTimeoutError):
            provider.ask(RequestKind.REVIEW, PROMPT)

    @patch("repolens_core.providers.base.time.sleep")
    def test_bad_gateway_retried_then_succeeds(self, mock_sleep):
        client = MagicMock()
        client.chat.completions.create.side_effect = [openai_status_error(502), openai_completion("{}")]
        provider = OpenAIProvider(make_settings(max_retries=1), make_sensitive(), client=client)

        assert provider.ask(RequestKind.REVIEW, PROMPT).content == "{}"
        assert client.chat.completions.create.call_count == 2


class TestLMStudioProvider:
    def _settings(self, model="local-model"):
        return make_settings(name="lmstudio", model=model, api_url="http://localhost:1234/v1/chat/completions")

    def test_starts_without_api_key(self):
        provider = LMStudioProvider(self._settings(), make_sensitive(api_key=""))
        assert str(provider.client.base_url).rstrip("/") == "http://localhost:1234/v1"

    def test_request_uses_fixed_temperature_and_no_seed(self):
        client = MagicMock()
        client.chat.completions.create.return_value = openai_completion("{}")
        provider = LMStudioProvider(self._settings(model="turbo-preview-local"), make_sensitive(), client=client)

        provider.ask(RequestKind.REVIEW, PROMPT)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.7
        assert kwargs["stream"] is False
        assert "seed" not in kwargs
        assert "response_format" not in kwargs


# ---------------------------------------------------------------------------
# Gemini (public endpoint)
# ---------------------------------------------------------------------------


def gemini_payload(*texts):
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": t} for t in texts]}}]}


class TestGeminiConversion:
    def test_build_contents_puts_every_message_in_one_user_turn(self):
        body = build_contents(PROMPT)
        assert body["contents"]["role"] == "user"
        assert [p["text"] for p in body["contents"]["parts"]] == [m.content for m in PROMPT.messages]

    def test_parts_across_candidates_joined_with_newlines(self):
        payload = gemini_payload("a", "b")
        payload["candidates"].append({"content": {"parts": [{"text": "c"}]}})
        response = to_provider_response([payload], "gemini-1.5-pro")
        assert len(response.choices) == 1
        assert response.content == "a\nb\nc"

    def test_payload_without_candidates_gives_empty_content(self):
        assert to_provider_response([{}], "m").content == ""

    @pytest.mark.parametrize(
        "status, message",
        [
            (401, "Authorization error. Code: 401"),
            (400, "API request format not correctly formed. Code: 400"),
            (403, "Forbidden. Check API permissions. Code: 403"),
            (500, "An unexpected HTTP error code: 500"),
        ],
    )
    def test_status_messages(self, status, message):
        with pytest.raises(ProviderError) as exc_info:
            check_status(status)
        assert str(exc_info.value) == message
        assert exc_info.value.status_code == status
        assert not isinstance(exc_info.value, TransientProviderError)

    def test_bad_gateway_is_transient(self):
        with pytest.raises(TransientProviderError):
            check_status(502)

    def test_success_passes(self):
        check_status(200)


class TestGeminiProvider:
    def _provider(self, handler, **kw):
        client = httpx.Client(transport=httpx.MockTransport(handler))
        settings = make_settings(name="google", model="gemini-1.5-pro", api_url=GEMINI_URL, **kw)
        return GeminiProvider(settings, make_sensitive(), client=client)

    def test_posts_to_model_url_with_key_param(self):
        captured = []

        def handler(request):
            captured.append(request)
            return httpx.Response(200, json=gemini_payload('{"summary": "ok"}'))

        response = self._provider(handler).ask(RequestKind.REVIEW, PROMPT)

        assert response.content == '{"summary": "ok"}'
        request = captured[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/models/gemini-1.5-pro:generateContent"
        assert request.url.params["key"] == "secret"
        assert json.loads(request.content) == build_contents(PROMPT)

    def test_unauthorised_raises_provider_error(self):
        provider = self._provider(lambda request: httpx.Response(401, json={}))
        with pytest.raises(ProviderError, match="Authorization error"):
            provider.ask(RequestKind.REVIEW, PROMPT)

    @patch("repolens_core.providers.base.time.sleep")
    def test_bad_gateway_retried(self, mock_sleep):
        responses = [httpx.Response(502), httpx.Response(200, json=gemini_payload("fine"))]
        provider = self._provider(lambda request: responses.pop(0), max_retries=1)
        assert provider.ask(RequestKind.REVIEW, PROMPT).content == "fine"

    def test_timeout_maps_to_typed_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ProviderTimeoutError):
            self._provider(handler).ask(RequestKind.REVIEW, PROMPT)

    def test_non_json_body_raises(self):
        provider = self._provider(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(ProviderError, match="not JSON"):
            provider.ask(RequestKind.REVIEW, PROMPT)

    def test_requires_api_key(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
        settings = make_settings(name="google", model="gemini-1.5-pro", api_url=GEMINI_URL)
        provider = GeminiProvider(settings, make_sensitive(api_key=""), client=client)
        with pytest.raises(ConfigurationError):
            provider.ask(RequestKind.REVIEW, PROMPT)


# ---------------------------------------------------------------------------
# Vertex AI (streamed)
# ---------------------------------------------------------------------------


class TestJsonArrayStream:
    def test_decodes_whole_array(self):
        stream = JsonArrayStream()
        assert stream.feed('[{"a": 1}, {"b": 2}]') == [{"a": 1}, {"b": 2}]
        stream.close()

    def test_decodes_elements_split_across_chunks(self):
        text = '[{"text": "hello, [world]"},\n {"n": 2}]'
        stream = JsonArrayStream()
        items = []
        for ch in text:
            items.extend(stream.feed(ch))
        stream.close()
        assert items == [{"text": "hello, [world]"}, {"n": 2}]

    def test_incomplete_array_raises_on_close(self):
        stream = JsonArrayStream()
        stream.feed('[{"a": 1}, {"b"')
        with pytest.raises(ProviderError):
            stream.close()

    def test_non_array_rejected(self):
        with pytest.raises(ProviderError):
            JsonArrayStream().feed('{"a": 1}')


class TestVertexProvider:
    def _provider(self, handler, project_id="proj"):
        client = httpx.Client(transport=httpx.MockTransport(handler))
        settings = make_settings(name="vertex", model="gemini-1.5-pro", api_url=VERTEX_URL)
        credentials = MagicMock(valid=True, token="bearer-token")
        return VertexProvider(settings, make_sensitive(project_id=project_id), client=client, credentials=credentials)

    def test_api_url_filled_from_sensitive_settings(self):
        provider = self._provider(lambda request: httpx.Response(200))
        assert provider.api_url() == (
            "https://us-central1-aiplatform.googleapis.com/v1/projects/proj"
            "/locations/us-central1/publishers/google/models/gemini-1.5-pro:streamGenerateContent"
        )

    def test_missing_project_id_is_configuration_error(self):
        provider = self._provider(lambda request: httpx.Response(200), project_id=None)
        with pytest.raises(ConfigurationError, match="project_id"):
            provider.api_url()

    def test_streamed_candidates_joined(self):
        captured = []
        body = json.dumps(
            [
                gemini_payload('{"summary":'),
                {**gemini_payload(' "ok"}'), "usageMetadata": {"totalTokenCount": 12}},
            ]
        )

        def handler(request):
            captured.append(request)
            return httpx.Response(200, text=body)

        response = self._provider(handler).ask(RequestKind.REVIEW, PROMPT)

        assert response.content == '{"summary":\n "ok"}'
        assert captured[0].headers["Authorization"] == "Bearer bearer-token"
        assert json.loads(captured[0].content) == build_contents(PROMPT)

    def test_refreshes_invalid_credentials(self):
        credentials = MagicMock(valid=False, token="fresh")
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="[]")))
        settings = make_settings(name="vertex", model="gemini-1.5-pro", api_url=VERTEX_URL)
        provider = VertexProvider(settings, make_sensitive(), client=client, credentials=credentials)

        provider.ask(RequestKind.REVIEW, PROMPT)

        credentials.refresh.assert_called_once()

    def test_forbidden_raises(self):
        provider = self._provider(lambda request: httpx.Response(403))
        with pytest.raises(ProviderError, match="Forbidden"):
            provider.ask(RequestKind.REVIEW, PROMPT)


# ---------------------------------------------------------------------------
# Anthropic (optional extra)
# ---------------------------------------------------------------------------


class TestAnthropicProvider:
    def test_system_messages_sent_separately(self):
        pytest.importorskip("anthropic")
        from anthropic.types import TextBlock

        from repolens_core.providers.anthropic import AnthropicProvider

        client = MagicMock()
        client.messages.create.return_value = MagicMock(
            id="msg_1",
            model="claude-sonnet",
            content=[TextBlock(type="text", text='{"summary": "ok"}')],
        )
        settings = make_settings(name="anthropic", model="claude-sonnet", api_url="https://api.anthropic.com")
        provider = AnthropicProvider(settings, make_sensitive(), client=client)

        response = provider.ask(RequestKind.REVIEW, PROMPT)

        assert response.content == '{"summary": "ok"}'
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "You are a reviewer."
        assert kwargs["messages"] == [{"role": "user", "content": "File name: a.py\nprint(1)\n"}]
        assert kwargs["max_tokens"] == 4096
