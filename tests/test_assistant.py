"""
Tests for the assistant resolver (threads/runs protocol, polling, fallbacks).
"""

import json

import httpx
import pytest

from humidor.mocks.fixtures import MOCK_ASSISTANT_RECORD
from humidor.services.assistant import (
    AssistantResolver,
    MockAssistantResolver,
    format_assistant_message,
)
from humidor.services.cancellation import CancellationToken
from humidor.services.errors import IdentificationCancelled
from humidor.services.records import FAILED_MESSAGE, UNKNOWN_CIGAR
from humidor.services.vision import VisionResult


class FakeAssistantAPI:
    """In-process stand-in for the assistants HTTP API."""

    def __init__(self, statuses=None, reply=None, fail_path=None):
        self.statuses = list(statuses or ["completed"])
        self.reply = reply if reply is not None else json.dumps(MOCK_ASSISTANT_RECORD)
        self.fail_path = fail_path
        self.requests: list[tuple[str, str, dict]] = []
        self.cancelled = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.method, path, body))

        if self.fail_path and path.endswith(self.fail_path):
            return httpx.Response(500, json={"error": "server error"})

        if request.method == "POST" and path.endswith("/threads"):
            return httpx.Response(200, json={"id": "thread_1"})
        if request.method == "POST" and path.endswith("/messages"):
            return httpx.Response(200, json={"id": "msg_1"})
        if request.method == "POST" and path.endswith("/cancel"):
            self.cancelled = True
            return httpx.Response(200, json={"id": "run_1", "status": "cancelling"})
        if request.method == "POST" and path.endswith("/runs"):
            return httpx.Response(200, json={"id": "run_1", "status": "queued"})
        if request.method == "GET" and path.endswith("/runs/run_1"):
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            return httpx.Response(200, json={"id": "run_1", "status": status})
        if request.method == "GET" and path.endswith("/messages"):
            return httpx.Response(200, json={"data": [
                {"role": "assistant", "content": [{"type": "text", "text": {"value": self.reply}}]},
                {"role": "user", "content": [{"type": "text", "text": {"value": "prompt"}}]},
            ]})
        return httpx.Response(404, json={"error": "not found"})


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.delays: list[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.on_sleep:
            self.on_sleep()


def make_resolver(api: FakeAssistantAPI, sleep=None, **kwargs) -> AssistantResolver:
    return AssistantResolver(
        api_key="sk-test",
        assistant_id="asst_test",
        base_url="https://api.test/v1",
        transport=httpx.MockTransport(api.handler),
        sleep=sleep or RecordingSleep(),
        **kwargs,
    )


VISION = VisionResult(probable_name="COHIBA", band_description='The band reads "COHIBA"')


class TestFormatAssistantMessage:
    def test_includes_vision_fields(self):
        message = format_assistant_message(VISION)
        assert 'Visible words: "COHIBA"' in message
        assert 'Visual Description: "The band reads "COHIBA""' in message
        assert "No specific interests were noted." in message
        assert "Return only valid JSON" in message

    def test_interests_and_hint(self):
        message = format_assistant_message(VISION, ["pairings", " history "], "Cohiba Siglo VI")
        assert "The smoker is interested in: pairings, history." in message
        assert 'They think it might be: "Cohiba Siglo VI".' in message

    def test_missing_probable_name(self):
        message = format_assistant_message(VisionResult("", "plain band"))
        assert 'Visible words: "N/A"' in message


class TestAssistantResolver:
    """Tests for the threads/runs sequence."""

    @pytest.mark.asyncio
    async def test_happy_path(self):
        api = FakeAssistantAPI(statuses=["in_progress", "completed"])
        sleep = RecordingSleep()
        resolver = make_resolver(api, sleep=sleep)

        record = await resolver.resolve(VISION, interests=["pairings"], user_id="u1")

        assert record.full_name == "Cohiba Robusto"
        assert record.common_notes == "cedar, cocoa, honey"
        assert not record.is_fallback
        assert not record.is_user_corrected

        methods_paths = [(m, p.rsplit("/v1", 1)[-1]) for m, p, _ in api.requests]
        assert methods_paths[:3] == [
            ("POST", "/threads"),
            ("POST", "/threads/thread_1/messages"),
            ("POST", "/threads/thread_1/runs"),
        ]
        run_body = api.requests[2][2]
        assert run_body["assistant_id"] == "asst_test"
        assert run_body["metadata"] == {"user_id": "u1"}
        assert sleep.delays == [1.0, 1.5]

    @pytest.mark.asyncio
    async def test_backoff_sequence(self):
        api = FakeAssistantAPI(statuses=["in_progress"] * 4 + ["completed"])
        sleep = RecordingSleep()
        await make_resolver(api, sleep=sleep).resolve(VISION)
        assert sleep.delays[:3] == [1.0, 1.5, 2.25]
        assert max(sleep.delays) <= 5.0

    @pytest.mark.asyncio
    async def test_name_hint_marks_user_corrected(self):
        api = FakeAssistantAPI()
        record = await make_resolver(api).resolve(VISION, name_hint="Cohiba Robusto")
        assert record.is_user_corrected
        assert 'They think it might be: "Cohiba Robusto".' in api.requests[1][2]["content"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["failed", "expired", "cancelled", "requires_action"])
    async def test_failed_run_returns_fallback(self, status):
        api = FakeAssistantAPI(statuses=[status])
        record = await make_resolver(api).resolve(VISION)
        assert record.is_fallback
        assert record.full_name == "COHIBA"
        assert record.description == FAILED_MESSAGE

    @pytest.mark.asyncio
    async def test_timeout_cancels_run_and_falls_back(self):
        api = FakeAssistantAPI(statuses=["in_progress"])
        sleep = RecordingSleep()
        record = await make_resolver(api, sleep=sleep, timeout=10).resolve(VISION)

        assert record.is_fallback
        assert api.cancelled
        assert sum(sleep.delays) >= 10

    @pytest.mark.asyncio
    async def test_unparseable_reply_falls_back(self):
        api = FakeAssistantAPI(reply="I am not sure which cigar that is.")
        record = await make_resolver(api).resolve(VisionResult("", "plain band"))
        assert record.is_fallback
        assert record.full_name == UNKNOWN_CIGAR

    @pytest.mark.asyncio
    async def test_fenced_reply_parsed(self):
        api = FakeAssistantAPI(reply="```json\n" + json.dumps(MOCK_ASSISTANT_RECORD) + "\n```")
        record = await make_resolver(api).resolve(VISION)
        assert record.full_name == "Cohiba Robusto"
        assert not record.is_fallback

    @pytest.mark.asyncio
    async def test_http_error_falls_back(self):
        api = FakeAssistantAPI(fail_path="/threads")
        record = await make_resolver(api).resolve(VISION)
        assert record.is_fallback

    @pytest.mark.asyncio
    async def test_missing_assistant_id_falls_back(self, monkeypatch):
        monkeypatch.delenv("OPENAI_ASSISTANT_ID", raising=False)
        api = FakeAssistantAPI()
        resolver = AssistantResolver(
            api_key="sk-test",
            assistant_id="",
            base_url="https://api.test/v1",
            transport=httpx.MockTransport(api.handler),
        )
        record = await resolver.resolve(VISION)
        assert record.is_fallback
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_cancel_between_polls(self):
        api = FakeAssistantAPI(statuses=["in_progress"])
        token = CancellationToken("s1")
        sleep = RecordingSleep(on_sleep=token.cancel)

        with pytest.raises(IdentificationCancelled):
            await make_resolver(api, sleep=sleep).resolve(VISION, cancel_token=token)
        assert api.cancelled

    @pytest.mark.asyncio
    async def test_already_cancelled_makes_no_calls(self):
        api = FakeAssistantAPI()
        token = CancellationToken()
        token.cancel()
        with pytest.raises(IdentificationCancelled):
            await make_resolver(api).resolve(VISION, cancel_token=token)
        assert api.requests == []


class TestMockAssistantResolver:
    @pytest.mark.asyncio
    async def test_records_calls(self):
        resolver = MockAssistantResolver()
        record = await resolver.resolve(VISION, interests=["history"], user_id="u1")
        assert record.full_name == "Cohiba Robusto"
        assert resolver.calls[0]["interests"] == ["history"]
        assert resolver.calls[0]["user_id"] == "u1"

    @pytest.mark.asyncio
    async def test_partial_scenario_parses(self):
        record = await MockAssistantResolver(scenario="partial").resolve(VISION)
        assert not record.is_usable

    def test_unknown_scenario(self):
        with pytest.raises(ValueError):
            MockAssistantResolver(scenario="nope")
