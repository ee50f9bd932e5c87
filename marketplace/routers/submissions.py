"""
Submissions router: project content and its review lifecycle.
Business rules:
1. Creating a submission ensures the creator has applied to the project
2. Spark code / TikTok link are only accepted when the brand asked for them
3. A revision uploads the new video first, then retires the old object
4. Every status write is checked against the submission transition table
"""
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from marketplace.config import Settings, get_settings
from marketplace.dependencies import CurrentUser, Submissions
from marketplace.errors import PermissionDeniedError, ValidationError
from marketplace.schemas import (
    SparkCodeRequest,
    SubmissionResponse,
    SubmissionReviewRequest,
    SubmissionStatusUpdate,
    TikTokLinkRequest,
)
from marketplace.services import VideoUpload

router = APIRouter()


async def read_video(
    video: UploadFile = File(...),
    settings: Settings = Depends(get_settings),
) -> VideoUpload:
    """Read the multipart video into memory, enforcing MAX_UPLOAD_BYTES."""
    content_type = video.content_type or ""
    if not content_type.startswith("video/"):
        raise ValidationError("Uploaded file must be a video")

    data = await video.read(settings.MAX_UPLOAD_BYTES + 1)
    if not data:
        raise ValidationError("Uploaded video is empty")
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise ValidationError("Uploaded video exceeds the maximum size")
    return VideoUpload(filename=video.filename or "video.mp4", content_type=content_type, data=data)


@router.post(
    "/submissions",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a video to a project",
    responses={
        400: {"description": "Missing file or project"},
        404: {"description": "Project not found"},
        500: {"description": "Storage failure"},
    }
)
async def create_submission(
    current_user: CurrentUser,
    submissions: Submissions,
    project_id: str = Form(..., alias="projectId"),
    upload: VideoUpload = Depends(read_video),
):
    return submissions.create(current_user, project_id, upload)


@router.post("/submissions/spark-code", summary="Deliver a requested Spark code")
async def submit_spark_code(body: SparkCodeRequest, current_user: CurrentUser, submissions: Submissions):
    submission = submissions.submit_spark_code(body.submission_id, body.spark_code, current_user)
    return {
        "success": True,
        "data": {"submissionId": submission.id, "status": submission.status.value},
    }


@router.post("/submissions/tiktok-link", summary="Deliver a requested TikTok link")
async def submit_tiktok_link(body: TikTokLinkRequest, current_user: CurrentUser, submissions: Submissions):
    submission = submissions.submit_tiktok_link(body.submission_id, body.tiktok_link, current_user)
    return {
        "success": True,
        "data": {"submissionId": submission.id, "status": submission.status.value},
    }


@router.post(
    "/submissions/revision",
    summary="Resubmit a revised video",
    responses={
        403: {"description": "Not the submission's creator"},
        409: {"description": "No revision was requested"},
        500: {"description": "Storage failure"},
    }
)
async def submit_revision(
    current_user: CurrentUser,
    submissions: Submissions,
    submission_id: str = Form(..., alias="submissionId"),
    upload: VideoUpload = Depends(read_video),
):
    """
    Flow:
    1. Upload the new video (failure -> 500, submission untouched)
    2. Point the submission at it, status back to pending
    3. Delete the superseded object (failure is queued for cleanup, not surfaced)
    """
    submission = submissions.submit_revision(submission_id, upload, current_user)
    return {
        "success": True,
        "data": {
            "submissionId": submission.id,
            "videoUrl": submission.video_url,
            "status": submission.status.value,
        },
    }


@router.get("/submissions/{submission_id}", response_model=SubmissionResponse)
async def get_submission(submission_id: str, current_user: CurrentUser, submissions: Submissions):
    return submissions.get(submission_id, current_user)


@router.patch(
    "/submissions/{submission_id}",
    summary="Owner status update",
    responses={
        403: {"description": "userId is not the submission's owner"},
        409: {"description": "Illegal status transition"},
    }
)
async def update_submission_status(
    submission_id: str,
    body: SubmissionStatusUpdate,
    current_user: CurrentUser,
    submissions: Submissions,
):
    """
    Body userId must be the caller; the service then checks it owns the submission.
    """
    if body.user_id != current_user.user_id and not current_user.is_admin:
        raise PermissionDeniedError("You don't have permission to update this submission")
    submission = submissions.update_status(submission_id, body.status, body.user_id)
    return {
        "success": True,
        "message": "Submission status updated successfully",
        "submissionId": submission.id,
    }


@router.post(
    "/submissions/{submission_id}/review",
    response_model=SubmissionResponse,
    summary="Brand review decision",
    responses={
        403: {"description": "Not the project owner"},
        409: {"description": "Illegal status transition"},
    }
)
async def review_submission(
    submission_id: str,
    body: SubmissionReviewRequest,
    current_user: CurrentUser,
    submissions: Submissions,
):
    return submissions.review(submission_id, current_user, body.status, body.feedback)
