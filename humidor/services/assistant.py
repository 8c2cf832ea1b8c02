"""
Assistant resolver: turns a band description into an identification record.

The cigar assistant is a stateful conversational model with the cigar
database attached. One resolution is the HTTP sequence

    create thread → post prompt message → start run → poll run → read reply

against the OpenAI-compatible assistants API. Polling starts at
Config.ASSISTANT_POLL_INTERVAL, backs off by ASSISTANT_POLL_BACKOFF up to
ASSISTANT_POLL_MAX_INTERVAL, and gives up after ASSISTANT_TIMEOUT (treated as
a failed run).

resolve() never raises for a bad answer: run failures, timeouts and
unparseable replies become a fallback record (is_fallback=True). Only
IdentificationCancelled propagates.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from ..config import Config
from ..models import IdentificationRecord
from ..models.enums import TERMINAL_FAILURE_STATUSES, RunStatus
from .cancellation import CancellationToken
from .errors import ResolutionDegraded
from .records import FAILED_MESSAGE, build_fallback_record, parse_identification_text
from .vision import VisionResult

logger = logging.getLogger(__name__)


def format_assistant_message(
    vision: VisionResult,
    interests: Optional[list[str]] = None,
    name_hint: Optional[str] = None,
) -> str:
    """
    Build the prompt posted to the assistant thread.

    Interests steer the tone of the generated description (pairing-focused,
    history-focused, ...). The name hint carries a user correction on
    re-analysis.
    """
    interests = [i.strip() for i in (interests or []) if i and i.strip()]
    if interests:
        interest_text = f"The smoker is interested in: {', '.join(interests)}."
    else:
        interest_text = "No specific interests were noted."
    hint_text = f'They think it might be: "{name_hint.strip()}".' if name_hint and name_hint.strip() else ""

    lines = [
        "A cigar band was scanned. Here's what the AI vision saw:",
        f'- Visible words: "{vision.probable_name or "N/A"}"',
        f'- Visual Description: "{vision.band_description or "No detail provided"}"',
        "",
        interest_text,
    ]
    if hint_text:
        lines.append(hint_text)
    lines += [
        "",
        "Identify the best matching cigar from the attached cigar database. "
        "Use your knowledge to fill in any missing metadata. Return only valid JSON "
        "with the keys fullName, brand, line, description, originCountry, wrapperType, "
        "strength, commonNotes and recommendedPairings.",
    ]
    return "\n".join(lines)


def _finalize(record: IdentificationRecord, name_hint: Optional[str]) -> IdentificationRecord:
    if name_hint and name_hint.strip():
        return record.model_copy(update={"is_user_corrected": True})
    return record


def _record_from_reply(text: str, vision: VisionResult, name_hint: Optional[str]) -> IdentificationRecord:
    """Parse a reply, degrading to the fallback record on any parse failure."""
    try:
        record = parse_identification_text(text)
    except ResolutionDegraded as e:
        logger.warning(f"Assistant reply unusable, using fallback: {e}")
        logger.debug(f"Assistant raw reply: {(text or '')[:500]}")
        record = build_fallback_record(name_hint or vision.probable_name, FAILED_MESSAGE)
    return _finalize(record, name_hint)


class AssistantResolverProtocol(Protocol):
    """Protocol for assistant resolvers (allows mocking)."""
    async def resolve(
        self,
        vision: VisionResult,
        interests: Optional[list[str]] = None,
        name_hint: Optional[str] = None,
        user_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> IdentificationRecord: ...


class AssistantResolver:
    """Resolves identifications through the assistants threads/runs API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        assistant_id: Optional[str] = None,
        base_url: Optional[str] = None,
        poll_interval: float = Config.ASSISTANT_POLL_INTERVAL,
        poll_backoff: float = Config.ASSISTANT_POLL_BACKOFF,
        max_poll_interval: float = Config.ASSISTANT_POLL_MAX_INTERVAL,
        timeout: float = Config.ASSISTANT_TIMEOUT,
        http_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the resolver.

        Args:
            api_key: OpenAI API key. Falls back to OPENAI_API_KEY env var.
            assistant_id: Assistant to run. Falls back to OPENAI_ASSISTANT_ID.
            base_url: API base URL. Defaults to Config.openai_base_url().
            poll_interval: First delay between run status polls (seconds).
            poll_backoff: Multiplier applied to the delay after each poll.
            max_poll_interval: Ceiling for a single delay.
            timeout: Total polling budget; exceeding it counts as a failed run.
            http_timeout: Timeout for each HTTP call.
            transport: Optional httpx transport (tests inject MockTransport).
            sleep: Awaitable sleep, replaceable in tests.
        """
        self.api_key = api_key or Config.openai_api_key()
        self.assistant_id = assistant_id or Config.assistant_id()
        self.base_url = (base_url or Config.openai_base_url()).rstrip("/")
        self.poll_interval = poll_interval
        self.poll_backoff = poll_backoff
        self.max_poll_interval = max_poll_interval
        self.timeout = timeout
        self.http_timeout = http_timeout or Config.http_timeout()
        self._transport = transport
        self._sleep = sleep

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "OpenAI-Beta": "assistants=v2",
        }

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, **kwargs) -> dict:
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ResolutionDegraded(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise ResolutionDegraded(f"{method} {path} returned non-JSON: {e}") from e
        if not isinstance(data, dict):
            raise ResolutionDegraded(f"{method} {path} returned {type(data).__name__}")
        return data

    async def _cancel_run(self, client: httpx.AsyncClient, thread_id: str, run_id: str) -> None:
        """Best-effort server-side cancel of an abandoned run."""
        try:
            await client.post(f"/threads/{thread_id}/runs/{run_id}/cancel")
        except httpx.HTTPError as e:
            logger.debug(f"Run cancel failed for {run_id}: {e}")

    async def _poll_run(
        self,
        client: httpx.AsyncClient,
        thread_id: str,
        run_id: str,
        status: Optional[str],
        cancel_token: Optional[CancellationToken],
    ) -> None:
        """
        Poll until the run completes.

        Raises:
            ResolutionDegraded: Terminal failure status or polling budget exhausted.
            IdentificationCancelled: The session was cancelled between polls.
        """
        delay = self.poll_interval
        waited = 0.0
        polls = 0

        while status != RunStatus.COMPLETED.value:
            if status in TERMINAL_FAILURE_STATUSES:
                raise ResolutionDegraded(f"Assistant run {run_id} ended with status '{status}'")
            if waited >= self.timeout:
                await self._cancel_run(client, thread_id, run_id)
                raise ResolutionDegraded(f"Assistant run {run_id} timed out after {waited:.0f}s")

            await self._sleep(delay)
            waited += delay
            delay = min(delay * self.poll_backoff, self.max_poll_interval)

            if cancel_token is not None and cancel_token.cancelled:
                await self._cancel_run(client, thread_id, run_id)
                cancel_token.raise_if_cancelled()

            run = await self._request(client, "GET", f"/threads/{thread_id}/runs/{run_id}")
            status = run.get("status")
            polls += 1

        logger.info(f"Assistant run {run_id} completed after {polls} polls ({waited:.1f}s)")

    @staticmethod
    def _latest_reply_text(messages: dict) -> str:
        for message in messages.get("data") or []:
            if message.get("role") != "assistant":
                continue
            for part in message.get("content") or []:
                if part.get("type") == "text":
                    return (part.get("text") or {}).get("value", "")
        raise ResolutionDegraded("Assistant thread has no text reply")

    async def _run(self, prompt: str, user_id: Optional[str], cancel_token: Optional[CancellationToken]) -> str:
        """Execute the full thread/run sequence and return the reply text."""
        if not self.api_key:
            raise ResolutionDegraded("OPENAI_API_KEY not configured")
        if not self.assistant_id:
            raise ResolutionDegraded("OPENAI_ASSISTANT_ID not configured")

        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.http_timeout,
            transport=self._transport,
        ) as client:
            thread = await self._request(client, "POST", "/threads", json={})
            thread_id = thread.get("id")
            if not thread_id:
                raise ResolutionDegraded("Thread creation returned no id")

            await self._request(
                client, "POST", f"/threads/{thread_id}/messages",
                json={"role": "user", "content": prompt},
            )
            run = await self._request(
                client, "POST", f"/threads/{thread_id}/runs",
                json={"assistant_id": self.assistant_id, "metadata": {"user_id": user_id or "anonymous"}},
            )
            run_id = run.get("id")
            if not run_id:
                raise ResolutionDegraded("Run creation returned no id")

            await self._poll_run(client, thread_id, run_id, run.get("status"), cancel_token)

            messages = await self._request(
                client, "GET", f"/threads/{thread_id}/messages",
                params={"order": "desc", "limit": 5},
            )
            return self._latest_reply_text(messages)

    async def resolve(
        self,
        vision: VisionResult,
        interests: Optional[list[str]] = None,
        name_hint: Optional[str] = None,
        user_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> IdentificationRecord:
        """
        Resolve a vision result into an identification record.

        Returns:
            The parsed record, or a fallback record (is_fallback=True) when
            the run fails, times out or replies with something unparseable.

        Raises:
            IdentificationCancelled: If cancel_token is cancelled mid-run.
        """
        prompt = format_assistant_message(vision, interests, name_hint)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            text = await self._run(prompt, user_id, cancel_token)
        except ResolutionDegraded as e:
            logger.warning(f"Assistant resolution degraded: {e}")
            return _finalize(build_fallback_record(name_hint or vision.probable_name, FAILED_MESSAGE), name_hint)

        return _record_from_reply(text, vision, name_hint)


class MockAssistantResolver:
    """Replies with canned text (USE_MOCKS / tests); parsing is the real one."""

    def __init__(self, reply: Optional[str] = None, scenario: str = "cohiba_robusto"):
        if reply is None:
            from ..mocks.fixtures import get_mock_assistant_reply
            reply = get_mock_assistant_reply(scenario)
        self.reply = reply
        self.calls: list[dict] = []

    async def resolve(
        self,
        vision: VisionResult,
        interests: Optional[list[str]] = None,
        name_hint: Optional[str] = None,
        user_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> IdentificationRecord:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        self.calls.append({
            "vision": vision,
            "interests": list(interests or []),
            "name_hint": name_hint,
            "user_id": user_id,
        })
        return _record_from_reply(self.reply, vision, name_hint)


def get_assistant_resolver(use_mock: Optional[bool] = None) -> AssistantResolverProtocol:
    """Build the configured assistant resolver."""
    if use_mock is None:
        use_mock = Config.use_mocks()
    if use_mock:
        return MockAssistantResolver()
    return AssistantResolver()
