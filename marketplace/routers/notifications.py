"""
Notifications router.
Recipients list their notifications, mark them read (singly or in bulk) and
answer project invitations. Query-string userId must be the caller.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from marketplace.dependencies import CurrentUser, Notifications, ensure_same_user
from marketplace.errors import ValidationError
from marketplace.schemas import (
    InvitationResponseRequest,
    NotificationResponse,
    PaginatedResponse,
    PaginationParams,
)

router = APIRouter()


def pagination_params(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
) -> PaginationParams:
    return PaginationParams(page=page, limit=limit)


def required_user_id(user_id: Optional[str] = Query(None, alias="userId")) -> str:
    if not user_id:
        raise ValidationError("User ID is required")
    return user_id


@router.get("/notifications", response_model=PaginatedResponse[NotificationResponse])
async def list_notifications(
    current_user: CurrentUser,
    notifications: Notifications,
    pagination: PaginationParams = Depends(pagination_params),
):
    """
    Newest first. The pagination block also carries unread/read counts.
    """
    items, total, unread = notifications.list_for_user(
        current_user.user_id, pagination.page, pagination.limit
    )
    return PaginatedResponse.create(
        data=[NotificationResponse.model_validate(n) for n in items],
        page=pagination.page,
        limit=pagination.limit,
        total=total,
        unread=unread,
        read=total - unread,
    )


@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(notification_id: str, current_user: CurrentUser, notifications: Notifications):
    return notifications.mark_read(notification_id, current_user)


@router.post(
    "/notifications/invitation-response",
    summary="Accept or decline a project invitation",
    responses={
        400: {"description": "Missing field or invalid response"},
        404: {"description": "Notification or project not found"},
        409: {"description": "Invitation already answered"},
    }
)
async def respond_to_invitation(
    body: InvitationResponseRequest,
    current_user: CurrentUser,
    notifications: Notifications,
    user_id: str = Depends(required_user_id),
):
    """
    All four writes (notification, invitation entry, participants, owner
    notification) commit together with the request transaction or not at all.
    """
    ensure_same_user(current_user, user_id)
    notifications.respond_to_invitation(
        notification_id=body.notification_id,
        project_id=body.project_id,
        user_id=user_id,
        response=body.response,
        creator_name=body.creator_name,
    )
    return {"success": True}


@router.post("/notifications/mark-all-read", summary="Mark every unread notification read")
async def mark_all_read(
    current_user: CurrentUser,
    notifications: Notifications,
    user_id: str = Depends(required_user_id),
):
    ensure_same_user(current_user, user_id)
    updated, remaining = notifications.mark_all_read(user_id)
    return {"success": True, "updated": updated, "remainingUnread": remaining}
