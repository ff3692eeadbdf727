"""Routing strategies: who owns a question, who answers it, where it is delivered.

One strategy is chosen at startup from ``ROUTING_MODE`` and injected into the
question and webhook services, which stay mode agnostic:

- ``GlobalRouting`` (single_user): one allowed chat identity, sessions are
  unowned and replies go to the most recent waiting session overall.
- ``PerUserRouting`` (multi_user): chat identities map to user ids through the
  directory, sessions are owned, replies only reach the owner's sessions.
  Unknown identities receive a link code.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

import structlog
from redis.exceptions import RedisError

from hitl_relay.core.auth import AuthContext
from hitl_relay.core.exceptions import (
    LinkCodeInvalidError,
    LinkingUnavailableError,
    PermissionDeniedError,
    RelayValidationError,
)
from hitl_relay.core.logging import mask_key
from hitl_relay.routing.directory import UserDirectory
from hitl_relay.routing.link_codes import LinkCodeStore

logger = structlog.get_logger(__name__)


class ResolutionKind(str, Enum):
    SCOPED = "scoped"
    GLOBAL = "global"
    REJECTED = "rejected"
    NEEDS_LINKING = "needs_linking"


@dataclass(frozen=True)
class Resolution:
    """Outcome of mapping a chat identity to a routing key."""

    kind: ResolutionKind
    user_id: str | None = None
    link_code: str | None = None

    @classmethod
    def scoped(cls, user_id: str) -> "Resolution":
        return cls(ResolutionKind.SCOPED, user_id=user_id)

    @classmethod
    def global_scope(cls) -> "Resolution":
        return cls(ResolutionKind.GLOBAL)

    @classmethod
    def rejected(cls) -> "Resolution":
        return cls(ResolutionKind.REJECTED)

    @classmethod
    def needs_linking(cls, link_code: str) -> "Resolution":
        return cls(ResolutionKind.NEEDS_LINKING, link_code=link_code)


class RoutingStrategy(ABC):
    mode: str

    def __init__(self, fixed_user_key: str = ""):
        self.fixed_user_key = fixed_user_key

    def is_fixed_user(self, channel_user_key: str) -> bool:
        return bool(self.fixed_user_key) and channel_user_key == self.fixed_user_key

    @abstractmethod
    async def resolve(self, channel_user_key: str) -> Resolution:
        """Map an inbound chat identity to a routing key. Never raises."""

    @abstractmethod
    def question_owner(self, auth: AuthContext, target_user_id: str | None) -> str | None:
        """Owner to tag a newly created session with.

        Raises:
            RelayValidationError: target_user_id missing where required
            PermissionDeniedError: caller may not post for target_user_id
        """

    @abstractmethod
    async def delivery_target(self, owner_user_id: str | None) -> str | None:
        """Chat identity outbound messages for this owner go to, if known."""

    @abstractmethod
    async def complete_link(self, link_code: str, user_id: str) -> str:
        """Redeem a link code for ``user_id``; returns the linked chat identity."""


class GlobalRouting(RoutingStrategy):
    """Single-user mode."""

    mode = "single_user"

    async def resolve(self, channel_user_key: str) -> Resolution:
        if self.is_fixed_user(channel_user_key):
            return Resolution.global_scope()
        return Resolution.rejected()

    def question_owner(self, auth: AuthContext, target_user_id: str | None) -> str | None:
        return None

    async def delivery_target(self, owner_user_id: str | None) -> str | None:
        return self.fixed_user_key or None

    async def complete_link(self, link_code: str, user_id: str) -> str:
        raise LinkingUnavailableError("Chat account linking is only available in multi-user mode.")


class PerUserRouting(RoutingStrategy):
    """Multi-user mode with fixed-identity compatibility fallback."""

    mode = "multi_user"

    def __init__(self, directory: UserDirectory, link_codes: LinkCodeStore, fixed_user_key: str = ""):
        super().__init__(fixed_user_key)
        self.directory = directory
        self.link_codes = link_codes

    async def resolve(self, channel_user_key: str) -> Resolution:
        try:
            user_id = await self.directory.lookup_user(channel_user_key)
        except RedisError as exc:
            # Lookup failure routes like "not found"
            logger.error("directory_lookup_failed", error=str(exc))
            user_id = None

        if user_id:
            return Resolution.scoped(user_id)

        if self.is_fixed_user(channel_user_key):
            return Resolution.global_scope()

        try:
            code = await self.link_codes.create(channel_user_key)
        except (RedisError, RuntimeError) as exc:
            logger.error("link_code_issue_failed", channel_user=mask_key(channel_user_key), error=str(exc))
            return Resolution.rejected()
        return Resolution.needs_linking(code)

    def question_owner(self, auth: AuthContext, target_user_id: str | None) -> str | None:
        if not auth.is_user_token:
            # Static-token agents keep posting unowned sessions during migration
            return None
        if not target_user_id:
            raise RelayValidationError("target_user_id is required in multi-user mode.")
        if target_user_id != auth.user_id:
            raise PermissionDeniedError("caller_user_id must match target_user_id.")
        return target_user_id

    async def delivery_target(self, owner_user_id: str | None) -> str | None:
        if owner_user_id is None:
            return self.fixed_user_key or None
        try:
            return await self.directory.channel_for_user(owner_user_id)
        except RedisError as exc:
            logger.error("directory_lookup_failed", user_id=owner_user_id, error=str(exc))
            return None

    async def complete_link(self, link_code: str, user_id: str) -> str:
        channel_user_key = await self.link_codes.resolve(link_code)
        if not channel_user_key:
            raise LinkCodeInvalidError()
        await self.directory.link(user_id, channel_user_key)
        return channel_user_key


# Process-wide strategy, chosen at startup
_strategy: RoutingStrategy | None = None


def init_routing_strategy(strategy: RoutingStrategy) -> None:
    global _strategy
    _strategy = strategy


def get_routing_strategy() -> RoutingStrategy:
    """Return the process-wide routing strategy.

    Raises RuntimeError if init_routing_strategy() has not been called.
    """
    if _strategy is None:
        raise RuntimeError("Routing strategy not initialized. Call init_routing_strategy() first.")
    return _strategy
