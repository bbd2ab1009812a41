"""Edge-function style endpoints consumed directly by the web client.

Provides:
- POST /functions/v1/chat - Stateless completion for {message, messages[]}
- POST /functions/v1/check-subscription - Resolve plan and usage
- POST /functions/v1/create-checkout - Billing checkout redirect
- POST /functions/v1/customer-portal - Billing portal redirect

Every endpoint answers OPTIONS with an empty body and permissive CORS
headers. Errors are returned as {"error": ..., "details": ...}.
"""
from typing import Any, Dict, Literal, Optional
import logging

from fastapi import APIRouter, Depends, Header, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import Settings, get_settings
from app.core.deps import (
    authenticate,
    get_completion_provider,
    get_quota_tracker,
    get_subscription_resolver,
)
from app.core.errors import AuthError, ChatAppError, PersistenceError, QuotaExceededError
from app.services.completion import CompletionProvider
from app.services.quota import QuotaTracker
from app.services.subscription import SubscriptionResolver

logger = logging.getLogger(__name__)

FUNCTIONS_PREFIX = "/functions/v1"

router = APIRouter(prefix=FUNCTIONS_PREFIX, tags=["functions"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
}


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatFunctionRequest(BaseModel):
    message: str
    messages: list[HistoryMessage] = []


class CheckoutRequest(BaseModel):
    plan: str


def _json(content: Dict[str, Any], status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers=CORS_HEADERS)


def _error(message: str, status_code: int, details: Optional[str] = None) -> JSONResponse:
    content: Dict[str, Any] = {"error": message}
    if details is not None:
        content["details"] = details
    return _json(content, status_code)


@router.options("/{function_name}")
def preflight(function_name: str) -> Response:
    """CORS pre-flight: empty body, permissive headers."""
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@router.post("/chat")
def chat_completion(
    request: ChatFunctionRequest,
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    quota: QuotaTracker = Depends(get_quota_tracker),
    completion: CompletionProvider = Depends(get_completion_provider),
) -> JSONResponse:
    """
    Answer one message given the caller-supplied history.

    Counts the message against the caller's daily quota once the completion
    provider is known to be configured, then asks the model.
    Returns {"message": text}.
    """
    try:
        user = authenticate(authorization, settings)
        completion.ensure_configured()

        usage = quota.check_quota(user)
        if not usage.allowed:
            raise QuotaExceededError(usage.limit)
        try:
            quota.increment_usage(user)
        except PersistenceError as e:
            logger.error(f"Usage not counted: user={user.id}, error={e.details}")

        reply = completion.complete(
            settings.SYSTEM_PROMPT,
            [m.model_dump() for m in request.messages],
            request.message,
        )
        return _json({"message": reply})

    except AuthError as e:
        return _error(e.message, status.HTTP_401_UNAUTHORIZED, e.details)
    except QuotaExceededError as e:
        return _error(e.message, status.HTTP_429_TOO_MANY_REQUESTS, e.details)
    except ChatAppError as e:
        logger.error(f"Error in chat function: {e.message} ({e.details})")
        return _error(
            "Failed to process chat request",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            e.details or e.message,
        )


@router.api_route("/check-subscription", methods=["GET", "POST"])
def check_subscription(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    resolver: SubscriptionResolver = Depends(get_subscription_resolver),
) -> JSONResponse:
    """Resolve the caller's plan and return it with today's usage."""
    try:
        user = authenticate(authorization, settings)
        state = resolver.resolve(user)
        return _json(state.to_dict())
    except AuthError as e:
        return _error(e.message, status.HTTP_401_UNAUTHORIZED)
    except ChatAppError as e:
        logger.error(f"Error in check-subscription: {e.message} ({e.details})")
        return _error(e.message, status.HTTP_500_INTERNAL_SERVER_ERROR)


@router.post("/create-checkout")
def create_checkout(
    request: CheckoutRequest,
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    resolver: SubscriptionResolver = Depends(get_subscription_resolver),
) -> JSONResponse:
    """Start a checkout for the requested plan. Returns {"url": ...}."""
    try:
        user = authenticate(authorization, settings)
        return _json({"url": resolver.create_checkout(user, request.plan, settings.APP_URL)})
    except AuthError as e:
        return _error(e.message, status.HTTP_401_UNAUTHORIZED)
    except ValueError as e:
        return _error(str(e), status.HTTP_400_BAD_REQUEST)
    except ChatAppError as e:
        logger.error(f"Error in create-checkout: {e.message} ({e.details})")
        return _error(e.message, status.HTTP_500_INTERNAL_SERVER_ERROR)


@router.post("/customer-portal")
def customer_portal(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
    resolver: SubscriptionResolver = Depends(get_subscription_resolver),
) -> JSONResponse:
    """Open the billing portal. Returns {"url": ...}."""
    try:
        user = authenticate(authorization, settings)
        return _json({"url": resolver.open_portal(user, settings.APP_URL)})
    except AuthError as e:
        return _error(e.message, status.HTTP_401_UNAUTHORIZED)
    except ChatAppError as e:
        logger.error(f"Error in customer-portal: {e.message} ({e.details})")
        return _error(e.message, status.HTTP_500_INTERNAL_SERVER_ERROR)
