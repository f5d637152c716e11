"""Tests for the Vapi voice adapter."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from src.config import settings
from src.errors import VoiceEngineFailure
from src.voice import vapi
from src.voice.client import VoiceClient, VoiceEventEmitter
from src.voice.events import VoiceCallHandle, VoiceEvent, VoiceEventType
from src.voice.vapi import (
    VapiVoiceClient,
    create_voice_client,
    dispatch_server_message,
    translate_server_message,
)

CONTROL_URL = "https://phone-call-websocket.aws-us-west-2-backend-production1.vapi.ai/c1/control"


def _client(handler, **kwargs) -> VapiVoiceClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VapiVoiceClient(
        api_key="key",
        base_url="https://api.vapi.test",
        server_url=kwargs.get("server_url", "https://bot.example.com/webhooks/vapi"),
        server_secret=kwargs.get("server_secret", "s3cret"),
        requires_agent=False,
        http_client=http,
    )


def _created(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/call/web":
        return httpx.Response(
            201,
            json={"id": "c1", "webCallUrl": "https://vapi.daily.co/c1", "monitor": {"controlUrl": CONTROL_URL}},
        )
    return httpx.Response(200, json={})


# -- Emitter ------------------------------------------------------------------


class TestVoiceEventEmitter:
    async def test_listeners_deduplicated(self):
        emitter = VoiceEventEmitter()
        listener = AsyncMock()
        emitter.subscribe(listener)
        emitter.subscribe(listener)
        assert emitter.listener_count == 1

        await emitter.emit(VoiceEvent(VoiceEventType.CALL_STARTED))
        listener.assert_awaited_once()

    async def test_failing_listener_isolated(self):
        emitter = VoiceEventEmitter()
        bad = AsyncMock(side_effect=RuntimeError("boom"))
        good = AsyncMock()
        emitter.subscribe(bad)
        emitter.subscribe(good)

        await emitter.emit(VoiceEvent(VoiceEventType.CALL_ENDED))
        good.assert_awaited_once()

    def test_unsubscribe_unknown_is_noop(self):
        emitter = VoiceEventEmitter()
        emitter.unsubscribe(AsyncMock())
        assert emitter.listener_count == 0


# -- Client -------------------------------------------------------------------


class TestVapiVoiceClient:
    def test_satisfies_protocol(self):
        assert isinstance(_client(_created), VoiceClient)

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "vapi_api_key", "")
        with pytest.raises(VoiceEngineFailure):
            VapiVoiceClient()

    async def test_start_creates_web_call(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return _created(request)

        client = _client(handler)
        handle = await client.start("asst-1", {"userId": "u1", "modelId": None})

        assert handle == VoiceCallHandle(call_id="c1", join_url="https://vapi.daily.co/c1")
        assert client.open_calls == {"c1"}
        assert vapi._active_calls["c1"] is client
        assert seen["auth"] == "Bearer key"
        assert seen["body"]["assistantId"] == "asst-1"
        overrides = seen["body"]["assistantOverrides"]
        assert overrides["variableValues"] == {"userId": "u1"}
        assert overrides["server"] == {
            "url": "https://bot.example.com/webhooks/vapi",
            "secret": "s3cret",
        }

    async def test_start_without_server_url(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return _created(request)

        await _client(handler, server_url="").start("asst-1", {})
        assert "server" not in seen["body"]["assistantOverrides"]

    async def test_start_http_error(self):
        client = _client(lambda request: httpx.Response(401, text="bad key"))
        with pytest.raises(VoiceEngineFailure, match="401"):
            await client.start("asst-1", {})
        assert client.open_calls == set()

    async def test_start_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(VoiceEngineFailure):
            await _client(handler).start("asst-1", {})

    async def test_stop_sends_end_call(self):
        posted = []

        def handler(request):
            if str(request.url) == CONTROL_URL:
                posted.append(json.loads(request.content))
            return _created(request)

        client = _client(handler)
        await client.start("asst-1", {})
        await client.stop()

        assert posted == [{"type": "end-call"}]
        assert client.open_calls == set()
        assert "c1" not in vapi._active_calls

    async def test_stop_by_id_leaves_other_calls_open(self):
        ids = iter(["c1", "c2"])
        posted = []

        def handler(request):
            if request.url.path == "/call/web":
                call_id = next(ids)
                return httpx.Response(
                    201,
                    json={"id": call_id, "monitor": {"controlUrl": f"https://control.test/{call_id}"}},
                )
            posted.append(str(request.url))
            return httpx.Response(200, json={})

        client = _client(handler)
        await client.start("asst-1", {})
        await client.start("asst-1", {})

        await client.stop("c1")

        assert posted == ["https://control.test/c1"]
        assert client.open_calls == {"c2"}
        assert set(vapi._active_calls) == {"c2"}

    async def test_aclose_releases_calls(self):
        client = _client(_created)
        await client.start("asst-1", {})
        await client.aclose()
        assert client.open_calls == set()
        assert "c1" not in vapi._active_calls

    async def test_stop_without_call_is_noop(self):
        calls = []
        client = _client(lambda request: calls.append(request) or httpx.Response(200))
        await client.stop()
        assert calls == []

    async def test_stop_never_raises(self):
        def handler(request):
            if request.url.path == "/call/web":
                return _created(request)
            raise httpx.ConnectError("gone", request=request)

        client = _client(handler)
        await client.start("asst-1", {})
        await client.stop()


class TestCreateVoiceClient:
    def test_disabled_without_assistant(self, monkeypatch):
        monkeypatch.setattr(settings, "vapi_assistant_id", "")
        monkeypatch.setattr(settings, "vapi_api_key", "key")
        assert create_voice_client() is None

    def test_disabled_without_key(self, monkeypatch):
        monkeypatch.setattr(settings, "vapi_assistant_id", "asst-1")
        monkeypatch.setattr(settings, "vapi_api_key", "")
        assert create_voice_client() is None

    def test_enabled(self, monkeypatch):
        monkeypatch.setattr(settings, "vapi_assistant_id", "asst-1")
        monkeypatch.setattr(settings, "vapi_api_key", "key")
        assert isinstance(create_voice_client(), VapiVoiceClient)


# -- Server messages ----------------------------------------------------------


def _message(**fields) -> dict:
    fields.setdefault("call", {"id": "c1"})
    return {"message": fields}


class TestTranslateServerMessage:
    def test_in_progress_is_started(self):
        event = translate_server_message(_message(type="status-update", status="in-progress"))
        assert event == VoiceEvent(VoiceEventType.CALL_STARTED, call_id="c1")

    def test_ended(self):
        event = translate_server_message(
            _message(type="status-update", status="ended", endedReason="customer-ended-call")
        )
        assert event.type is VoiceEventType.CALL_ENDED

    def test_ended_with_error_reason(self):
        event = translate_server_message(
            _message(type="status-update", status="ended", endedReason="pipeline-error-openai")
        )
        assert event.type is VoiceEventType.ERROR
        assert event.error == "pipeline-error-openai"

    def test_other_status_ignored(self):
        assert translate_server_message(_message(type="status-update", status="ringing")) is None

    def test_final_user_transcript(self):
        event = translate_server_message(
            _message(type="transcript", transcriptType="final", role="user", transcript=" Hello ")
        )
        assert event.type is VoiceEventType.TRANSCRIPT_FINAL
        assert event.transcript == "Hello"

    def test_filtered_transcript_type_name(self):
        event = translate_server_message(
            _message(
                type='transcript[transcriptType="final"]',
                transcriptType="final",
                role="user",
                transcript="Hi",
            )
        )
        assert event.type is VoiceEventType.TRANSCRIPT_FINAL

    def test_partial_transcript_ignored(self):
        assert translate_server_message(
            _message(type="transcript", transcriptType="partial", role="user", transcript="Hel")
        ) is None

    def test_assistant_transcript_ignored(self):
        assert translate_server_message(
            _message(type="transcript", transcriptType="final", role="assistant", transcript="Hi")
        ) is None

    def test_end_of_call_report(self):
        event = translate_server_message(_message(type="end-of-call-report"))
        assert event.type is VoiceEventType.CALL_ENDED

    def test_unknown_type(self):
        assert translate_server_message(_message(type="speech-update")) is None

    def test_non_dict_message(self):
        assert translate_server_message({"message": "nope"}) is None


class TestDispatchServerMessage:
    async def test_routes_to_owning_client(self):
        client = _client(_created)
        await client.start("asst-1", {})
        listener = AsyncMock()
        client.subscribe(listener)

        delivered = await dispatch_server_message(
            _message(type="status-update", status="in-progress")
        )

        assert delivered is True
        listener.assert_awaited_once_with(VoiceEvent(VoiceEventType.CALL_STARTED, call_id="c1"))

    async def test_unknown_call_dropped(self):
        assert await dispatch_server_message(
            _message(type="status-update", status="in-progress", call={"id": "nope"})
        ) is False

    async def test_ended_releases_call(self):
        client = _client(_created)
        await client.start("asst-1", {})

        await dispatch_server_message(_message(type="end-of-call-report"))

        assert client.open_calls == set()
        assert "c1" not in vapi._active_calls

    async def test_irrelevant_message(self):
        assert await dispatch_server_message(_message(type="hang")) is False
