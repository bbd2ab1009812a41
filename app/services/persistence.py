"""Persistence gateway over chats, messages and subscribers.

Plain mapping and ordering; no business rules live here. Every store
failure is rolled back and surfaced as PersistenceError.
"""
from datetime import datetime
from functools import wraps
from typing import Optional
import logging

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from app.core.clock import utcnow
from app.core.errors import PersistenceError
from app.models.chat import DEFAULT_CHAT_TITLE, Chat, Message
from app.models.subscriber import DEFAULT_LIMIT, DEFAULT_TIER, Subscriber

logger = logging.getLogger(__name__)


def _store_call(method):
    """Roll back and wrap SQLAlchemy failures raised by a gateway method."""

    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Store error in {method.__name__}: {str(e)}")
            raise PersistenceError(f"Failed to {method.__name__.replace('_', ' ')}", str(e)) from e

    return wrapper


class PersistenceGateway:
    """Row CRUD bound to one database session."""

    def __init__(self, session: Session):
        self.session = session

    # Chats

    @_store_call
    def create_chat(self, user_id: str, title: str = DEFAULT_CHAT_TITLE) -> Chat:
        chat = Chat(user_id=user_id, title=title)
        self.session.add(chat)
        self.session.commit()
        self.session.refresh(chat)
        return chat

    @_store_call
    def get_chat(self, user_id: str, chat_id: int) -> Optional[Chat]:
        statement = select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id)
        return self.session.exec(statement).first()

    @_store_call
    def list_chats(self, user_id: str, search: Optional[str] = None) -> list[Chat]:
        """Chats newest-activity first, optionally filtered by a title substring."""
        statement = select(Chat).where(Chat.user_id == user_id)
        if search:
            statement = statement.where(func.lower(Chat.title).contains(search.lower()))
        statement = statement.order_by(col(Chat.updated_at).desc(), col(Chat.id).desc())
        return list(self.session.exec(statement).all())

    @_store_call
    def update_chat_title(self, user_id: str, chat_id: int, title: str) -> Optional[Chat]:
        chat = self.get_chat(user_id, chat_id)
        if chat is None:
            return None
        chat.title = title
        chat.updated_at = utcnow()
        self.session.add(chat)
        self.session.commit()
        self.session.refresh(chat)
        return chat

    @_store_call
    def touch_chat(self, chat: Chat) -> None:
        chat.updated_at = utcnow()
        self.session.add(chat)
        self.session.commit()

    @_store_call
    def delete_chat(self, user_id: str, chat_id: int) -> bool:
        """Delete a chat and its messages. Returns False if not found or not owned."""
        chat = self.get_chat(user_id, chat_id)
        if chat is None:
            return False
        self.session.execute(delete(Message).where(col(Message.chat_id) == chat_id))
        self.session.delete(chat)
        self.session.commit()
        return True

    # Messages

    @_store_call
    def add_message(self, chat_id: int, user_id: str, role: str, content: str) -> Message:
        message = Message(chat_id=chat_id, user_id=user_id, role=role, content=content)
        self.session.add(message)
        self.session.commit()
        self.session.refresh(message)
        return message

    @_store_call
    def list_messages(self, user_id: str, chat_id: int) -> list[Message]:
        """Messages of a chat in creation order."""
        statement = (
            select(Message)
            .where(Message.chat_id == chat_id, Message.user_id == user_id)
            .order_by(col(Message.created_at), col(Message.id))
        )
        return list(self.session.exec(statement).all())

    # Subscribers

    @_store_call
    def get_subscriber(self, email: str) -> Optional[Subscriber]:
        subscriber = self.session.get(Subscriber, email)
        if subscriber is not None:
            # Counters may have moved under us via bulk UPDATEs
            self.session.refresh(subscriber)
        return subscriber

    @_store_call
    def upsert_subscription(
        self,
        email: str,
        user_id: str,
        customer_id: Optional[str],
        subscribed: bool,
        tier: str,
        limit: int,
        subscription_end: Optional[datetime],
    ) -> Subscriber:
        """Insert or update billing fields. daily_message_count is left as is."""
        now = utcnow()
        values = dict(
            user_id=user_id,
            stripe_customer_id=customer_id,
            subscribed=subscribed,
            subscription_tier=tier,
            daily_message_limit=limit,
            subscription_end=subscription_end,
            updated_at=now,
        )
        if not self._update_subscriber(email, **values):
            try:
                self.session.add(Subscriber(email=email, daily_message_count=0, **values))
                self.session.commit()
            except IntegrityError:
                # Concurrent insert won; apply our values over it
                self.session.rollback()
                self._update_subscriber(email, **values)
        return self.get_subscriber(email)

    @_store_call
    def increment_message_count(self, email: str, user_id: str) -> None:
        """Atomic +1, inserting a Base row with count=1 when none exists."""
        now = utcnow()
        bumped = self._update_subscriber(
            email,
            daily_message_count=Subscriber.daily_message_count + 1,
            updated_at=now,
        )
        if bumped:
            return
        try:
            self.session.add(Subscriber(
                email=email,
                user_id=user_id,
                subscription_tier=DEFAULT_TIER.value,
                daily_message_limit=DEFAULT_LIMIT,
                daily_message_count=1,
                updated_at=now,
            ))
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            self._update_subscriber(
                email,
                daily_message_count=Subscriber.daily_message_count + 1,
                updated_at=now,
            )

    @_store_call
    def reset_count_if_stale(self, email: str, day_start: datetime) -> bool:
        """Zero the counter when the row was last touched before `day_start`."""
        result = self.session.execute(
            update(Subscriber)
            .where(col(Subscriber.email) == email, col(Subscriber.updated_at) < day_start)
            .values(daily_message_count=0, updated_at=utcnow())
        )
        self.session.commit()
        return result.rowcount > 0

    @_store_call
    def reset_daily_counts(self, day_start: datetime) -> int:
        """Maintenance form of reset_count_if_stale over every subscriber."""
        result = self.session.execute(
            update(Subscriber)
            .where(col(Subscriber.updated_at) < day_start)
            .values(daily_message_count=0, updated_at=utcnow())
        )
        self.session.commit()
        return result.rowcount

    def _update_subscriber(self, email: str, **values) -> bool:
        result = self.session.execute(
            update(Subscriber).where(col(Subscriber.email) == email).values(**values)
        )
        self.session.commit()
        return result.rowcount > 0
