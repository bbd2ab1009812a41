"""Chat endpoint routes.

Provides:
- POST /api/chats/messages - Send a message (creates the chat on first send)
- GET /api/chats - List the user's chats, optionally filtered by title
- POST /api/chats - Start an empty chat
- GET /api/chats/{id}/messages - Get a chat with its messages
- PATCH /api/chats/{id} - Rename a chat
- DELETE /api/chats/{id} - Delete a chat and its messages
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from app.core.deps import get_chat_service, get_current_user, get_gateway
from app.core.errors import (
    ChatBusyError,
    ChatNotFoundError,
    PersistenceError,
    QuotaExceededError,
)
from app.core.security import AuthenticatedUser
from app.models.chat import Chat
from app.services.chat_service import ChatService, SessionContext, Turn
from app.services.persistence import PersistenceGateway
from app.services.quota import QuotaStatus

router = APIRouter(prefix="/api", tags=["chat"])

CONNECTION_NOTICE = "Connection Issue: Please try again."


class SendMessageRequest(BaseModel):
    """Request model for sending a chat message."""
    chat_id: Optional[int] = None
    message: str


class MessageResponse(BaseModel):
    """Response model for a single message. id is null if the write failed."""
    id: Optional[int]
    role: str
    content: str
    timestamp: datetime

    @classmethod
    def from_turn(cls, turn: Turn) -> "MessageResponse":
        return cls(id=turn.id, role=turn.role, content=turn.content, timestamp=turn.created_at)


class QuotaResponse(BaseModel):
    tier: str
    daily_message_count: int
    daily_message_limit: int
    remaining: int

    @classmethod
    def from_status(cls, quota: QuotaStatus) -> "QuotaResponse":
        return cls(
            tier=quota.tier,
            daily_message_count=quota.count,
            daily_message_limit=quota.limit,
            remaining=quota.remaining,
        )


class SendMessageResponse(BaseModel):
    """Response model for a processed send."""
    chat_id: int
    title: str
    message: MessageResponse
    fell_back: bool
    notice: Optional[str] = None
    quota: Optional[QuotaResponse] = None


class ChatSummary(BaseModel):
    """Response model for chat list entries."""
    id: int
    title: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_chat(cls, chat: Chat) -> "ChatSummary":
        return cls(id=chat.id, title=chat.title, created_at=chat.created_at, updated_at=chat.updated_at)


class ChatDetail(BaseModel):
    """Response model for a chat with messages."""
    id: int
    title: str
    created_at: datetime
    messages: list[MessageResponse]


class RenameChatRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)


@router.post("/chats/messages", response_model=SendMessageResponse)
def send_chat_message(
    request: SendMessageRequest,
    x_client_session: Optional[str] = Header(default=None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service),
) -> SendMessageResponse:
    """
    Send message to the assistant.

    Flow:
    1. Build the session context (open the chat if one is given)
    2. Run the send through the chat service
    3. Return the assistant turn, the chat title and the quota snapshot

    Raises:
        HTTPException: 400 if message is empty
        HTTPException: 404 if chat not found or not owned
        HTTPException: 409 if a send is already running for this chat
        HTTPException: 429 if the daily message limit is reached
        HTTPException: 503 if the store is unavailable
    """
    context = SessionContext(session_id=x_client_session or current_user.id, user=current_user)

    try:
        if request.chat_id is not None:
            context = chat_service.open_chat(context, request.chat_id)
        result = chat_service.send_message(context, request.message)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ChatNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ChatBusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except QuotaExceededError as e:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=e.details)
    except PersistenceError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat service temporarily unavailable",
        )

    next_context = result.context
    return SendMessageResponse(
        chat_id=next_context.chat_id,
        title=next_context.title,
        message=MessageResponse.from_turn(result.assistant_message),
        fell_back=result.fell_back,
        notice=CONNECTION_NOTICE if result.fell_back else None,
        quota=QuotaResponse.from_status(next_context.quota) if next_context.quota else None,
    )


@router.get("/chats", response_model=list[ChatSummary])
def list_chats(
    q: Optional[str] = Query(default=None, max_length=255),
    current_user: AuthenticatedUser = Depends(get_current_user),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> list[ChatSummary]:
    """List the user's chats, most recently active first."""
    return [ChatSummary.from_chat(chat) for chat in gateway.list_chats(current_user.id, search=q)]


@router.post("/chats", response_model=ChatSummary, status_code=status.HTTP_201_CREATED)
def create_chat(
    current_user: AuthenticatedUser = Depends(get_current_user),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> ChatSummary:
    """Start an empty chat titled "New Chat"."""
    return ChatSummary.from_chat(gateway.create_chat(current_user.id))


@router.get("/chats/{chat_id}/messages", response_model=ChatDetail)
def get_chat(
    chat_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> ChatDetail:
    """
    Get chat with all messages in creation order.

    Raises:
        HTTPException: 404 if chat not found or not owned
    """
    chat = gateway.get_chat(current_user.id, chat_id)
    if not chat:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")

    messages = gateway.list_messages(current_user.id, chat_id)
    return ChatDetail(
        id=chat.id,
        title=chat.title,
        created_at=chat.created_at,
        messages=[
            MessageResponse(id=msg.id, role=msg.role, content=msg.content, timestamp=msg.created_at)
            for msg in messages
        ],
    )


@router.patch("/chats/{chat_id}", response_model=ChatSummary)
def rename_chat(
    chat_id: int,
    request: RenameChatRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> ChatSummary:
    """Set a user-chosen title."""
    chat = gateway.update_chat_title(current_user.id, chat_id, request.title.strip())
    if not chat:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    return ChatSummary.from_chat(chat)


@router.delete("/chats/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_chat(
    chat_id: int,
    current_user: AuthenticatedUser = Depends(get_current_user),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> Response:
    """
    Delete chat and all of its messages.

    Raises:
        HTTPException: 404 if chat not found or not owned
    """
    if not gateway.delete_chat(current_user.id, chat_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
