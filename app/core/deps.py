"""FastAPI dependencies: database session, current user and service wiring."""
from typing import Iterator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlmodel import Session

from app.config import Settings, get_settings
from app.core.errors import AuthError
from app.core.security import AuthenticatedUser, decode_access_token, extract_bearer_token
from app.database import get_session
from app.services.billing import StripeBillingProvider
from app.services.chat_service import ChatService
from app.services.completion import CompletionProvider
from app.services.persistence import PersistenceGateway
from app.services.quota import QuotaTracker
from app.services.subscription import BillingProvider, SubscriptionResolver


def get_db() -> Iterator[Session]:
    yield from get_session()


def authenticate(authorization: Optional[str], settings: Settings) -> AuthenticatedUser:
    """Resolve the caller from an Authorization header value. Raises AuthError."""
    return decode_access_token(extract_bearer_token(authorization), settings)


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    """Authenticated user from the bearer token, or 401."""
    try:
        return authenticate(authorization, settings)
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_completion_provider(settings: Settings = Depends(get_settings)) -> CompletionProvider:
    return CompletionProvider(settings)


def get_billing_provider(settings: Settings = Depends(get_settings)) -> BillingProvider:
    return StripeBillingProvider(settings.STRIPE_SECRET_KEY, currency=settings.BILLING_CURRENCY)


def get_gateway(session: Session = Depends(get_db)) -> PersistenceGateway:
    return PersistenceGateway(session)


def get_quota_tracker(gateway: PersistenceGateway = Depends(get_gateway)) -> QuotaTracker:
    return QuotaTracker(gateway)


def get_subscription_resolver(
    gateway: PersistenceGateway = Depends(get_gateway),
    billing: BillingProvider = Depends(get_billing_provider),
    quota: QuotaTracker = Depends(get_quota_tracker),
) -> SubscriptionResolver:
    return SubscriptionResolver(gateway, billing, quota)


def get_chat_service(
    gateway: PersistenceGateway = Depends(get_gateway),
    quota: QuotaTracker = Depends(get_quota_tracker),
    completion: CompletionProvider = Depends(get_completion_provider),
    resolver: SubscriptionResolver = Depends(get_subscription_resolver),
    settings: Settings = Depends(get_settings),
) -> ChatService:
    return ChatService(
        gateway,
        quota,
        completion,
        resolver=resolver,
        system_prompt=settings.SYSTEM_PROMPT,
    )
