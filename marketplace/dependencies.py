"""
FastAPI dependency injection for sessions, authentication and the workflow components.
Design principles:
1. Dependencies are stateless (no side effects)
2. Gateway and storage clients are built once by the app lifespan and read from app.state
3. Each workflow component is assembled per request around the request's session
4. Auth failures raise AuthenticationError (main.py renders the 401)
"""
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Annotated, Optional
from marketplace.auth import Principal, decode_access_token
from marketplace.config import Settings, get_settings
from marketplace.database import get_db
from marketplace.errors import AuthenticationError, PermissionDeniedError
from marketplace.services import (
    ApplicationRegistry,
    ConversationService,
    NotificationService,
    OrderWorkflow,
    PaymentBridge,
    PaymentReleaseQueue,
    S3Storage,
    StripeGateway,
    SubmissionTracker,
)

# =======================================
# DATABASE / SETTINGS
# =======================================

DbSession = Annotated[Session, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]

# ===============================
# AUTHENTICATION DEPENDENCIES
# ==============================

# auto_error disabled so a missing header is a 401 with our error body
security = HTTPBearer(
    scheme_name="Bearer",
    description="Identity provider access token",
    auto_error=False
)


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """
    Verify the bearer token and return the actor.

    Failure modes:
    - Missing header -> 401
    - Invalid/expired token -> decode_access_token returns None -> 401
    - Token without subject -> 401
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Unauthorized")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Invalid authentication token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    return Principal(user_id=str(user_id), is_admin=bool(payload.get("is_admin", False)))


CurrentUser = Annotated[Principal, Depends(get_current_principal)]


async def require_admin(current_user: CurrentUser) -> Principal:
    if not current_user.is_admin:
        raise PermissionDeniedError("Admin access required")
    return current_user


AdminUser = Annotated[Principal, Depends(require_admin)]


def ensure_same_user(current_user: Principal, user_id: str) -> None:
    """Query-string userId must name the caller (admins may act for anyone)."""
    if user_id != current_user.user_id and not current_user.is_admin:
        raise PermissionDeniedError("Not authorized to act for this user")


# ===================================
# EXTERNAL SERVICE HANDLES
# ==================================

def get_payment_gateway(request: Request) -> StripeGateway:
    return request.app.state.payment_gateway


def get_storage(request: Request) -> S3Storage:
    return request.app.state.storage


# ===================================
# WORKFLOW COMPONENTS
# ==================================

def get_notification_service(db: DbSession) -> NotificationService:
    return NotificationService(db)


Notifications = Annotated[NotificationService, Depends(get_notification_service)]


def get_application_registry(db: DbSession, notifications: Notifications) -> ApplicationRegistry:
    return ApplicationRegistry(db, notifications)


Applications = Annotated[ApplicationRegistry, Depends(get_application_registry)]


def get_submission_tracker(
    db: DbSession,
    notifications: Notifications,
    applications: Applications,
    storage: S3Storage = Depends(get_storage),
) -> SubmissionTracker:
    return SubmissionTracker(db, storage, notifications, applications)


Submissions = Annotated[SubmissionTracker, Depends(get_submission_tracker)]


def get_payment_bridge(
    db: DbSession,
    notifications: Notifications,
    settings: AppSettings,
    gateway: StripeGateway = Depends(get_payment_gateway),
) -> PaymentBridge:
    return PaymentBridge(db, gateway, notifications, settings)


Payments = Annotated[PaymentBridge, Depends(get_payment_bridge)]


def get_release_queue(db: DbSession, settings: AppSettings) -> PaymentReleaseQueue:
    return PaymentReleaseQueue(db, settings)


def get_order_workflow(
    db: DbSession,
    notifications: Notifications,
    payments: Payments,
    release_queue: PaymentReleaseQueue = Depends(get_release_queue),
) -> OrderWorkflow:
    return OrderWorkflow(db, notifications, release_queue, payments)


Orders = Annotated[OrderWorkflow, Depends(get_order_workflow)]


def get_conversation_service(db: DbSession) -> ConversationService:
    return ConversationService(db)


Conversations = Annotated[ConversationService, Depends(get_conversation_service)]
