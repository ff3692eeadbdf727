"""Tests for QuestionService: at-most-one-pending, ownership, background delivery."""

import asyncio

import pytest

from hitl_relay.core.exceptions import PendingQuestionExistsError, PermissionDeniedError, RelayValidationError
from hitl_relay.outbound.dispatcher import OutboundDispatcher
from hitl_relay.outbound.notifier import DisabledNotifier
from hitl_relay.routing.directory import UserDirectory
from hitl_relay.routing.link_codes import LinkCodeStore
from hitl_relay.routing.strategy import GlobalRouting, PerUserRouting
from hitl_relay.services.question_service import QuestionService
from hitl_relay.sessions.models import Reply, ReplyType, SessionStatus, Severity

pytestmark = pytest.mark.unit

FIXED = "kakao-fixed-user-0001"


@pytest.fixture
def dispatcher(notifier):
    return OutboundDispatcher(notifier)


@pytest.fixture
def service(memory_store, dispatcher):
    return QuestionService(memory_store, GlobalRouting(fixed_user_key=FIXED), dispatcher)


@pytest.fixture
async def multi_user_service(memory_store, dispatcher, fake_redis):
    directory = UserDirectory(fake_redis)
    await directory.link("user-alice", "kakao-a")
    routing = PerUserRouting(directory, LinkCodeStore(fake_redis), fixed_user_key=FIXED)
    return QuestionService(memory_store, routing, dispatcher)


async def test_post_creates_waiting_session(service, memory_store, static_auth):
    accepted = await service.post_question(
        static_auth, "s1", text="Ship it?", severity=Severity.INFO, choices=["yes", "no"]
    )

    assert accepted.status == SessionStatus.WAITING_USER
    session = await memory_store.get("s1")
    assert session.status == SessionStatus.WAITING_USER
    assert session.pending_question.message_id == accepted.message_id
    assert session.pending_question.choices == ["yes", "no"]
    assert session.owner_user_id is None


async def test_second_question_conflicts_and_keeps_first(service, memory_store, static_auth):
    first = await service.post_question(static_auth, "s1", text="First?", severity=Severity.INFO)

    with pytest.raises(PendingQuestionExistsError) as exc_info:
        await service.post_question(static_auth, "s1", text="Second?", severity=Severity.DANGER)

    assert exc_info.value.message_id == first.message_id
    session = await memory_store.get("s1")
    assert session.pending_question.text == "First?"


async def test_concurrent_posts_install_exactly_one(service, static_auth):
    results = await asyncio.gather(
        *[
            service.post_question(static_auth, "race", text=f"Q{i}", severity=Severity.INFO)
            for i in range(5)
        ],
        return_exceptions=True,
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    conflicts = [r for r in results if isinstance(r, PendingQuestionExistsError)]
    assert len(accepted) == 1
    assert len(conflicts) == 4


async def test_new_question_allowed_after_reply(service, memory_store, static_auth):
    await service.post_question(static_auth, "s1", text="First?", severity=Severity.INFO)
    await memory_store.add_reply("s1", Reply(type=ReplyType.TEXT, text="ok"))

    second = await service.post_question(static_auth, "s1", text="Second?", severity=Severity.INFO)

    session = await memory_store.get("s1")
    assert session.pending_question.message_id == second.message_id
    assert session.status == SessionStatus.WAITING_USER
    assert len(session.replies) == 1


async def test_question_on_idle_session_moves_to_waiting(service, memory_store, static_auth):
    await memory_store.get_or_create("s1", SessionStatus.IDLE)

    await service.post_question(static_auth, "s1", text="Now?", severity=Severity.INFO)

    assert (await memory_store.get("s1")).status == SessionStatus.WAITING_USER


async def test_delivery_dispatched_to_fixed_identity(service, dispatcher, notifier, static_auth):
    accepted = await service.post_question(static_auth, "s1", text="Ship it?", severity=Severity.INFO)
    await dispatcher.drain()

    delivery = notifier.questions[0]
    assert delivery.message_id == accepted.message_id
    assert delivery.channel_user_key == FIXED
    assert delivery.choices == []


async def test_delivery_failure_does_not_affect_outcome(memory_store, notifier, static_auth):
    async def broken(delivery):
        raise RuntimeError("gateway down")

    notifier.send_question = broken
    dispatcher = OutboundDispatcher(notifier)
    service = QuestionService(memory_store, GlobalRouting(fixed_user_key=FIXED), dispatcher)

    accepted = await service.post_question(static_auth, "s1", text="Ship it?", severity=Severity.INFO)
    await dispatcher.drain()

    assert accepted.status == SessionStatus.WAITING_USER
    assert (await memory_store.get("s1")).pending_question is not None


async def test_disabled_sender_skips_delivery(memory_store, static_auth):
    dispatcher = OutboundDispatcher(DisabledNotifier())
    service = QuestionService(memory_store, GlobalRouting(fixed_user_key=FIXED), dispatcher)

    await service.post_question(static_auth, "s1", text="Ship it?", severity=Severity.INFO)

    assert dispatcher.pending == 0


class TestMultiUser:
    async def test_owner_is_target(self, multi_user_service, memory_store, dispatcher, notifier, alice_auth):
        await multi_user_service.post_question(
            alice_auth, "s1", text="Ship it?", severity=Severity.INFO, target_user_id="user-alice"
        )
        await dispatcher.drain()

        assert (await memory_store.get("s1")).owner_user_id == "user-alice"
        assert notifier.questions[0].channel_user_key == "kakao-a"
        assert notifier.questions[0].target_user_id == "user-alice"

    async def test_mismatched_target_forbidden(self, multi_user_service, memory_store, alice_auth):
        with pytest.raises(PermissionDeniedError):
            await multi_user_service.post_question(
                alice_auth, "s1", text="Ship it?", severity=Severity.INFO, target_user_id="user-bob"
            )
        assert await memory_store.get("s1") is None

    async def test_missing_target_rejected(self, multi_user_service, alice_auth):
        with pytest.raises(RelayValidationError):
            await multi_user_service.post_question(alice_auth, "s1", text="Ship it?", severity=Severity.INFO)

    async def test_static_token_posts_unowned(self, multi_user_service, memory_store, static_auth):
        await multi_user_service.post_question(static_auth, "s1", text="Ship it?", severity=Severity.INFO)
        assert (await memory_store.get("s1")).owner_user_id is None


class _SlowTargetRouting(GlobalRouting):
    def __init__(self, release: asyncio.Event, **kwargs):
        super().__init__(**kwargs)
        self.release = release

    async def delivery_target(self, owner_user_id):
        await self.release.wait()
        return await super().delivery_target(owner_user_id)


class _BrokenTargetRouting(GlobalRouting):
    async def delivery_target(self, owner_user_id):
        raise ValueError("directory unavailable")


async def test_accept_does_not_wait_for_target_lookup(memory_store, dispatcher, notifier, static_auth):
    release = asyncio.Event()
    service = QuestionService(memory_store, _SlowTargetRouting(release, fixed_user_key=FIXED), dispatcher)

    accepted = await asyncio.wait_for(
        service.post_question(static_auth, "s1", text="Ship it?", severity=Severity.INFO),
        timeout=0.5,
    )

    assert accepted.status == SessionStatus.WAITING_USER
    assert notifier.questions == []

    release.set()
    await dispatcher.drain()
    assert notifier.questions[0].channel_user_key == FIXED


async def test_failed_target_lookup_leaves_question_accepted(memory_store, dispatcher, notifier, static_auth):
    service = QuestionService(memory_store, _BrokenTargetRouting(fixed_user_key=FIXED), dispatcher)

    accepted = await service.post_question(static_auth, "s1", text="Ship it?", severity=Severity.INFO)
    await dispatcher.drain()

    assert accepted.status == SessionStatus.WAITING_USER
    assert notifier.questions == []
    assert dispatcher.pending == 0
    session = await memory_store.get("s1")
    assert session.pending_question.message_id == accepted.message_id
