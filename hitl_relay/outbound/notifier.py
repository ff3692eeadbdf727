"""Outbound delivery of questions and one-way notifications to the chat user.

``HttpNotifier`` posts a JSON envelope to a delivery gateway (the component
holding the chat provider credentials). 5xx responses and transport errors are
retried with exponential backoff; other failures come back as a failed
``SendResult`` instead of raising.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hitl_relay.sessions.models import Severity

logger = structlog.get_logger(__name__)

QUERY_HINT = "(Reply with your answer, or send 'pending' to see the question again)"

SEVERITY_PREFIX = {
    Severity.DANGER: "[URGENT] ",
    Severity.WARNING: "[WARNING] ",
    Severity.INFO: "",
}


def build_question_text(question_text: str, choices: list[str]) -> str:
    """Render a question as a plain chat message."""
    msg = question_text
    if choices:
        msg += "\n\nChoices: " + ", ".join(choices)
    msg += "\n" + QUERY_HINT
    return msg


def build_notification_text(text: str, severity: Severity) -> str:
    return f"{SEVERITY_PREFIX.get(severity, '')}{text}"


@dataclass(frozen=True)
class QuestionDelivery:
    session_id: str
    message_id: str
    question_text: str
    choices: list[str] = field(default_factory=list)
    channel_user_key: str | None = None
    target_user_id: str | None = None


@dataclass(frozen=True)
class NotificationDelivery:
    session_id: str
    text: str
    severity: Severity = Severity.INFO
    channel_user_key: str | None = None
    target_user_id: str | None = None


@dataclass(frozen=True)
class SendResult:
    ok: bool
    provider_message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class Notifier(ABC):
    enabled: bool = True

    @abstractmethod
    async def send_question(self, delivery: QuestionDelivery) -> SendResult:
        """Deliver a new pending question to the chat user."""

    @abstractmethod
    async def send_notification(self, delivery: NotificationDelivery) -> SendResult:
        """Deliver a one-way notification (no reply expected)."""

    async def aclose(self) -> None:
        pass


class DisabledNotifier(Notifier):
    """Used when no delivery gateway is configured; nothing leaves the process."""

    enabled = False

    async def send_question(self, delivery: QuestionDelivery) -> SendResult:
        return SendResult(ok=False, error_code="SENDER_DISABLED")

    async def send_notification(self, delivery: NotificationDelivery) -> SendResult:
        return SendResult(ok=False, error_code="SENDER_DISABLED")


class _RetryableStatusError(Exception):
    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Delivery gateway returned {status_code}")


class HttpNotifier(Notifier):
    """Posts deliveries to an HTTP gateway.

    Args:
        url: Gateway endpoint receiving ``{"kind": ..., ...}`` envelopes
        token: Optional bearer token for the gateway
        timeout: Per-request timeout in seconds
        client: Injected ``httpx.AsyncClient`` (tests use ``httpx.MockTransport``)
        retry_wait: tenacity wait strategy (0.5s, 1s, 2s by default)
    """

    MAX_ATTEMPTS = 4

    def __init__(
        self,
        url: str,
        token: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        retry_wait=None,
    ):
        self.url = url
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=2)

    async def send_question(self, delivery: QuestionDelivery) -> SendResult:
        payload = {
            "kind": "question",
            **asdict(delivery),
            "message": build_question_text(delivery.question_text, delivery.choices),
        }
        return await self._deliver(payload)

    async def send_notification(self, delivery: NotificationDelivery) -> SendResult:
        payload = {
            "kind": "notification",
            **asdict(delivery),
            "severity": delivery.severity.value,
            "message": build_notification_text(delivery.text, delivery.severity),
        }
        return await self._deliver(payload)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _deliver(self, payload: dict) -> SendResult:
        try:
            response = await self._post_with_retry(payload)
        except (RetryError, _RetryableStatusError, httpx.TransportError) as exc:
            return SendResult(ok=False, error_code="UPSTREAM_UNAVAILABLE", error_message=str(exc))

        if response.status_code >= 400:
            return SendResult(
                ok=False,
                error_code=f"HTTP_{response.status_code}",
                error_message=response.text[:200],
            )

        try:
            body = response.json()
        except ValueError:
            body = {}
        provider_message_id = body.get("message_id") if isinstance(body, dict) else None
        return SendResult(ok=True, provider_message_id=provider_message_id)

    async def _post_with_retry(self, payload: dict) -> httpx.Response:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type((httpx.TransportError, _RetryableStatusError)),
            stop=stop_after_attempt(self.MAX_ATTEMPTS),
            wait=self._retry_wait,
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "delivery_retrying",
                attempt=rs.attempt_number,
                sleep_seconds=rs.next_action.sleep,
            ),
        ):
            with attempt:
                response = await self._client.post(self.url, json=payload)
                if response.status_code >= 500:
                    raise _RetryableStatusError(response.status_code)
                return response
        raise RuntimeError("retry loop exited without a response")
