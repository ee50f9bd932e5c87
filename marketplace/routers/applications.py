"""
Applications router: creators applying to contests and projects.
Business rules:
1. One application per (creator, target), enforced by a unique constraint
2. Cancel deletes the application and decrements applicant_count (floor 0)
3. Only the target's owner (or an admin) reviews an application
"""
from fastapi import APIRouter, Query, status
from marketplace.dependencies import Applications, CurrentUser, ensure_same_user
from marketplace.schemas import (
    ApplicationResponse,
    ApplicationReviewRequest,
    ApplyRequest,
    CancelApplicationRequest,
)

router = APIRouter()


@router.post(
    "/applications",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Apply to a contest or project",
    responses={
        404: {"description": "Target not found"},
        409: {"description": "Already applied"},
    }
)
async def apply(body: ApplyRequest, current_user: CurrentUser, applications: Applications):
    return applications.apply(current_user.user_id, body.target_type, body.target_id)


@router.post(
    "/applications/cancel",
    summary="Withdraw an application",
    responses={
        200: {"description": "Application deleted"},
        404: {"description": "No application for this target"},
    }
)
async def cancel_application(body: CancelApplicationRequest, current_user: CurrentUser, applications: Applications):
    """
    Delete the caller's application to the contest/project in the body.
    A second cancel for the same target returns 404.
    """
    application_id = applications.cancel(current_user.user_id, body.target_id)
    return {
        "message": "Application canceled successfully",
        "applicationId": application_id,
    }


@router.get("/applications/check-applied", summary="Has this user applied to the target?")
async def check_applied(
    current_user: CurrentUser,
    applications: Applications,
    user_id: str = Query(..., alias="userId"),
    target_id: str = Query(..., alias="targetId"),
):
    ensure_same_user(current_user, user_id)
    return applications.check_status(user_id, target_id)


@router.post(
    "/applications/{application_id}/review",
    response_model=ApplicationResponse,
    summary="Approve or reject an application",
    responses={
        403: {"description": "Not the target's owner"},
        409: {"description": "Application already decided"},
    }
)
async def review_application(
    application_id: str,
    body: ApplicationReviewRequest,
    current_user: CurrentUser,
    applications: Applications,
):
    return applications.review(application_id, current_user, body.status)
