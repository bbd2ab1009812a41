"""Chat service layer: one message send from quota check to stored reply.

Handles:
- Quota gate before any side effect
- Lazy chat creation and message storage (user + assistant)
- Single completion call with a stored apology on failure
- First-turn title synthesis
- Usage increment and best-effort subscription refresh
"""
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Hashable, Iterator, Optional, Protocol, Sequence
import logging
import threading

from app.core.clock import utcnow
from app.core.errors import (
    ChatAppError,
    ChatBusyError,
    ChatNotFoundError,
    ConfigError,
    PersistenceError,
    ProviderError,
    QuotaExceededError,
)
from app.core.security import AuthenticatedUser
from app.models.chat import DEFAULT_CHAT_TITLE, ROLE_ASSISTANT, ROLE_USER, Chat, Message
from app.services.persistence import PersistenceGateway
from app.services.quota import QuotaStatus, QuotaTracker
from app.services.subscription import SubscriptionResolver
from app.services.titles import synthesize_title

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "I'm having trouble connecting to the AI service right now. Please try again."


class CompletionClient(Protocol):
    def complete(
        self,
        system_prompt: str,
        prior_messages: Sequence[Dict[str, str]],
        new_user_message: str,
    ) -> str: ...


class SendState(str, Enum):
    IDLE = "idle"
    QUOTA_CHECKED = "quota_checked"
    USER_MESSAGE_PERSISTED = "user_message_persisted"
    AWAITING_COMPLETION = "awaiting_completion"
    ASSISTANT_MESSAGE_PERSISTED = "assistant_message_persisted"
    TITLE_MAYBE_UPDATED = "title_maybe_updated"


@dataclass(frozen=True)
class Turn:
    """Detached view of a message. id is None when the write did not land."""

    role: str
    content: str
    created_at: datetime
    id: Optional[int] = None
    chat_id: Optional[int] = None

    @classmethod
    def from_message(cls, message: Message) -> "Turn":
        return cls(
            role=message.role,
            content=message.content,
            created_at=message.created_at,
            id=message.id,
            chat_id=message.chat_id,
        )

    def as_prompt(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class SessionContext:
    """
    Per-client-session view: active chat, its transcript and the last quota snapshot.

    Operations never mutate a context; they return the next one.
    """

    session_id: str
    user: AuthenticatedUser
    chat_id: Optional[int] = None
    title: str = DEFAULT_CHAT_TITLE
    messages: tuple[Turn, ...] = field(default_factory=tuple)
    quota: Optional[QuotaStatus] = None


@dataclass(frozen=True)
class SendResult:
    context: SessionContext
    user_message: Turn
    assistant_message: Turn
    fell_back: bool
    title_updated: bool


class InFlightGuard:
    """
    At most one send per key at a time.

    Keys are (client session, chat); sends on different chats run independently.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: set[Hashable] = set()

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._lock:
            if key in self._active:
                raise ChatBusyError("A message is already being sent in this chat")
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)

    def is_busy(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._active


# Shared across requests handled by this process
inflight_guard = InFlightGuard()


class ChatService:
    """Service layer for chat operations."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        quota: QuotaTracker,
        completion: CompletionClient,
        resolver: Optional[SubscriptionResolver] = None,
        system_prompt: str = "",
        guard: Optional[InFlightGuard] = None,
    ):
        """Initialize chat service."""
        self.gateway = gateway
        self.quota = quota
        self.completion = completion
        self.resolver = resolver
        self.system_prompt = system_prompt
        self.guard = guard or inflight_guard

    def new_chat(self, context: SessionContext) -> SessionContext:
        """Create an empty chat and make it the active one."""
        chat = self.gateway.create_chat(context.user.id)
        return replace(context, chat_id=chat.id, title=chat.title, messages=())

    def open_chat(self, context: SessionContext, chat_id: int) -> SessionContext:
        """
        Make an existing chat active and load its transcript.

        Raises:
            ChatNotFoundError: If chat_id is not owned by the user
        """
        chat = self._require_chat(context.user, chat_id)
        history = self.get_chat_history(context.user, chat.id)
        return replace(context, chat_id=chat.id, title=chat.title, messages=tuple(history))

    def get_or_create_chat(self, context: SessionContext) -> Chat:
        """
        Active chat of the context, created lazily with the default title.

        Raises:
            ChatNotFoundError: If the context points at a chat the user does not own
            PersistenceError: If the chat cannot be created
        """
        if context.chat_id is None:
            chat = self.gateway.create_chat(context.user.id)
            logger.info(f"Chat created: user={context.user.id}, chat={chat.id}")
            return chat
        return self._require_chat(context.user, context.chat_id)

    def store_message(self, chat: Chat, user: AuthenticatedUser, role: str, content: str) -> Turn:
        """
        Persist a message, keeping the conversation usable if the write fails.

        On PersistenceError the error is logged and an unsaved Turn is returned.
        """
        try:
            return Turn.from_message(self.gateway.add_message(chat.id, user.id, role, content))
        except PersistenceError as e:
            logger.error(f"Message not saved: user={user.id}, chat={chat.id}, role={role}, error={e.details}")
            return Turn(role=role, content=content, created_at=utcnow(), chat_id=chat.id)

    def get_chat_history(self, user: AuthenticatedUser, chat_id: int) -> list[Turn]:
        """All messages of a chat in creation order."""
        return [Turn.from_message(m) for m in self.gateway.list_messages(user.id, chat_id)]

    def send_message(self, context: SessionContext, message_text: str) -> SendResult:
        """
        Run one send through every state back to idle.

        Flow:
        1. Check quota (nothing is written when denied)
        2. Get or create chat, store user message
        3. Call the completion provider once with the prior transcript
        4. Store the reply, or the fallback apology if the call failed
        5. Title the chat on its first turn
        6. Count the message and refresh the subscription snapshot

        Returns:
            SendResult carrying the next SessionContext

        Raises:
            ValueError: If the message is blank
            QuotaExceededError: If today's limit is reached
            ChatNotFoundError: If the active chat is not owned by the user
            ChatBusyError: If a send is already running for this chat and session
        """
        text = message_text.strip()
        if not text:
            raise ValueError("Message cannot be empty")

        user = context.user
        with self.guard.hold((context.session_id, context.chat_id)):
            state = SendState.IDLE

            quota = self.quota.check_quota(user)
            if not quota.allowed:
                logger.info(f"Send blocked by quota: user={user.id}, count={quota.count}, limit={quota.limit}")
                raise QuotaExceededError(quota.limit)
            state = self._advance(state, SendState.QUOTA_CHECKED, user)

            chat = self.get_or_create_chat(context)
            if context.chat_id is None:
                prior: tuple[Turn, ...] = ()
            else:
                # Other client sessions may have appended turns
                prior = tuple(self.get_chat_history(user, chat.id))
            is_first_turn = len(prior) == 0

            user_turn = self.store_message(chat, user, ROLE_USER, text)
            state = self._advance(state, SendState.USER_MESSAGE_PERSISTED, user)

            state = self._advance(state, SendState.AWAITING_COMPLETION, user)
            reply, fell_back = self._complete(user, prior, text)

            assistant_turn = self.store_message(chat, user, ROLE_ASSISTANT, reply)
            state = self._advance(state, SendState.ASSISTANT_MESSAGE_PERSISTED, user)

            title, title_updated = self._maybe_update_title(chat, user, text, is_first_turn)
            state = self._advance(state, SendState.TITLE_MAYBE_UPDATED, user)

            snapshot = self._finish(user, quota)
            self._advance(state, SendState.IDLE, user)

        logger.info(
            f"Chat message processed: user={user.id}, chat={chat.id}, "
            f"message_id={user_turn.id}, response_id={assistant_turn.id}, fell_back={fell_back}"
        )

        next_context = replace(
            context,
            chat_id=chat.id,
            title=title,
            messages=prior + (user_turn, assistant_turn),
            quota=snapshot,
        )
        return SendResult(
            context=next_context,
            user_message=user_turn,
            assistant_message=assistant_turn,
            fell_back=fell_back,
            title_updated=title_updated,
        )

    def _complete(self, user: AuthenticatedUser, prior: Sequence[Turn], text: str) -> tuple[str, bool]:
        try:
            reply = self.completion.complete(
                self._build_system_prompt(),
                self._build_message_history(prior),
                text,
            )
            return reply, False
        except (ProviderError, ConfigError) as e:
            logger.error(f"Completion failed for user {user.id}: {e.message} ({e.details})")
            return FALLBACK_MESSAGE, True

    def _maybe_update_title(
        self, chat: Chat, user: AuthenticatedUser, text: str, is_first_turn: bool
    ) -> tuple[str, bool]:
        try:
            if not is_first_turn:
                self.gateway.touch_chat(chat)
                return chat.title, False
            title = synthesize_title(text)
            self.gateway.update_chat_title(user.id, chat.id, title)
            return title, True
        except PersistenceError as e:
            logger.error(f"Chat update failed: user={user.id}, chat={chat.id}, error={e.details}")
            return (synthesize_title(text) if is_first_turn else chat.title), False

    def _finish(self, user: AuthenticatedUser, quota: QuotaStatus) -> QuotaStatus:
        """Count the send, then refresh subscription state best-effort."""
        optimistic = replace(
            quota,
            count=quota.count + 1,
            remaining=max(quota.remaining - 1, 0),
            allowed=quota.count + 1 < quota.limit,
        )
        try:
            self.quota.increment_usage(user)
        except PersistenceError as e:
            logger.error(f"Usage not counted: user={user.id}, error={e.details}")
            return optimistic

        if self.resolver is not None:
            try:
                self.resolver.resolve(user)
            except ChatAppError as e:
                logger.warning(f"Subscription refresh failed for user {user.id}: {e.message}")

        try:
            return self.quota.check_quota(user)
        except PersistenceError as e:
            logger.error(f"Quota snapshot unavailable: user={user.id}, error={e.details}")
            return optimistic

    def _require_chat(self, user: AuthenticatedUser, chat_id: int) -> Chat:
        chat = self.gateway.get_chat(user.id, chat_id)
        if chat is None:
            raise ChatNotFoundError(f"Chat {chat_id} not found or not owned by user")
        return chat

    def _advance(self, current: SendState, target: SendState, user: AuthenticatedUser) -> SendState:
        logger.debug(f"Send state: user={user.id}, {current.value} -> {target.value}")
        return target

    def _build_message_history(self, history: Sequence[Turn]) -> list[Dict[str, str]]:
        """Convert stored turns to chat-completion format, oldest first."""
        return [turn.as_prompt() for turn in history]

    def _build_system_prompt(self) -> str:
        return self.system_prompt
