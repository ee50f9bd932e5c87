"""
Submission lifecycle tracker.

Creator side: create, spark code, TikTok link, revision resubmission.
Brand side: review (request spark/link, verify, approve, reject, request revision).
Every status write goes through SUBMISSION_TRANSITIONS; every creator action
appends to revision_history; every transition notifies the counterpart.

Video objects are never deleted inside a request. Each upload is preceded by
a StorageCleanup guard committed on its own connection; the request settles
the guard in its transaction, so a rollback leaves the orphan to the sweep.
A revision queues the superseded object as a pending cleanup in the same
transaction that repoints the row, so the row never names a deleted object.
"""
import logging
from typing import Optional
from sqlalchemy.orm import Session

from marketplace.auth import Principal
from marketplace.errors import NotFoundError, PermissionDeniedError, ValidationError
from marketplace.models import (
    SUBMISSION_TRANSITIONS,
    CleanupStatus,
    Project,
    StorageCleanup,
    Submission,
    SubmissionStatus,
    TargetType,
    utcnow,
)
from marketplace.services.applications import ApplicationRegistry
from marketplace.services.notifications import NotificationService
from marketplace.services.storage import S3Storage, VideoUpload, submission_object_key
from marketplace.services.transitions import ensure_transition

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    SubmissionStatus.APPROVED: "Your submission has been approved!",
    SubmissionStatus.REJECTED: "Your submission requires revisions.",
    SubmissionStatus.REVISION_REQUESTED: "The brand has requested a revision of your submission.",
    SubmissionStatus.SPARK_REQUESTED: "Please submit your Spark code for this submission.",
    SubmissionStatus.SPARK_VERIFIED: "Your Spark code has been verified.",
    SubmissionStatus.TIKTOK_LINK_REQUESTED: "Please submit the TikTok link for this submission.",
    SubmissionStatus.TIKTOK_LINK_VERIFIED: "Your TikTok link has been verified.",
}

# Statuses a project owner moves a submission into
REVIEW_STATUSES = frozenset({
    SubmissionStatus.SPARK_REQUESTED,
    SubmissionStatus.SPARK_VERIFIED,
    SubmissionStatus.TIKTOK_LINK_REQUESTED,
    SubmissionStatus.TIKTOK_LINK_VERIFIED,
    SubmissionStatus.REVISION_REQUESTED,
    SubmissionStatus.APPROVED,
    SubmissionStatus.REJECTED,
})


def status_message(new_status: SubmissionStatus) -> str:
    return STATUS_MESSAGES.get(
        new_status,
        f"Your submission status has been updated to: {new_status.value}",
    )


class SubmissionTracker:
    def __init__(
        self,
        db: Session,
        storage: S3Storage,
        notifications: NotificationService,
        applications: ApplicationRegistry,
    ):
        self.db = db
        self.storage = storage
        self.notifications = notifications
        self.applications = applications

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    def _load(self, submission_id: str) -> Submission:
        submission = self.db.get(Submission, submission_id)
        if submission is None:
            raise NotFoundError("Submission not found")
        return submission

    def _load_owned(self, submission_id: str, actor: Principal) -> Submission:
        submission = self._load(submission_id)
        if submission.user_id != actor.user_id and not actor.is_admin:
            raise PermissionDeniedError("You don't have permission to update this submission")
        return submission

    def get(self, submission_id: str, actor: Principal) -> Submission:
        submission = self._load(submission_id)
        allowed = (
            submission.user_id == actor.user_id
            or submission.project.owner_id == actor.user_id
            or actor.is_admin
        )
        if not allowed:
            raise PermissionDeniedError("Not authorized to view this submission")
        return submission

    def _notify_brand(self, submission: Submission, type: str, message: str) -> None:
        self.notifications.create(
            user_id=submission.project.owner_id,
            type=type,
            message=message,
            related_id=submission.id,
            related_to="submission",
        )

    def _notify_creator(self, submission: Submission, new_status: SubmissionStatus) -> None:
        self.notifications.create(
            user_id=submission.user_id,
            type="submission_status_update",
            message=status_message(new_status),
            related_id=submission.id,
            related_to="submission",
        )

    # ------------------------------------------------------------------
    # creator operations
    # ------------------------------------------------------------------

    def create(self, actor: Principal, project_id: str, upload: VideoUpload) -> Submission:
        """
        Store the video and open a pending submission.
        The creator's application to the project is created on the fly if missing.
        """
        project = self.db.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found")

        # upload before the first write so the guard commit never waits on our own lock
        key = submission_object_key(actor.user_id, upload)
        guard_id = self._store_video(key, upload, reason=f"upload for project {project_id} not committed")

        self.applications.ensure_applied(actor.user_id, TargetType.PROJECT, project_id)

        submission = Submission(
            user_id=actor.user_id,
            project_id=project_id,
            project=project,
            storage_path=key,
            file_name=upload.filename,
            video_url=self.storage.signed_url(key),
            status=SubmissionStatus.PENDING,
            revision_history=[],
            revisions_used=0,
        )
        submission.append_history("submitted")
        self.db.add(submission)
        self._settle_guard(guard_id)
        self.db.flush()

        self._notify_brand(
            submission,
            "new_submission",
            f"A new submission was received for \"{project.title}\".",
        )
        logger.info(f"Submission {submission.id} created for project {project_id}")
        return submission

    def submit_spark_code(self, submission_id: str, code: str, actor: Principal) -> Submission:
        """spark_requested -> spark_received. The code's format is not checked."""
        if not code:
            raise ValidationError("Missing required fields")
        submission = self._load_owned(submission_id, actor)
        ensure_transition("submission", SUBMISSION_TRANSITIONS, submission.status, SubmissionStatus.SPARK_RECEIVED)

        submission.spark_code = code
        submission.status = SubmissionStatus.SPARK_RECEIVED
        submission.append_history("spark_code_submitted")
        self.db.flush()

        self._notify_brand(submission, "spark_code_submitted", "A creator submitted their Spark code.")
        logger.info(f"Submission {submission.id} -> spark_received")
        return submission

    def submit_tiktok_link(self, submission_id: str, link: str, actor: Principal) -> Submission:
        """tiktokLink_requested -> tiktokLink_received."""
        if not link:
            raise ValidationError("Missing required fields")
        submission = self._load_owned(submission_id, actor)
        ensure_transition(
            "submission", SUBMISSION_TRANSITIONS, submission.status, SubmissionStatus.TIKTOK_LINK_RECEIVED
        )

        submission.tiktok_link = link
        submission.status = SubmissionStatus.TIKTOK_LINK_RECEIVED
        submission.append_history("tiktok_link_submitted")
        self.db.flush()

        self._notify_brand(submission, "tiktok_link_submitted", "A creator submitted their TikTok link.")
        logger.info(f"Submission {submission.id} -> tiktokLink_received")
        return submission

    def submit_revision(self, submission_id: str, upload: VideoUpload, actor: Principal) -> Submission:
        """
        Replace the video and send the submission back to pending.

        Order of effects:
        1. commit a guard for the new key, upload (failure -> UpstreamServiceError)
        2. point the row at it, status pending, history += revision_submitted
        3. settle the guard and queue the old object for deletion, both in
           the request transaction; the sweep deletes it after commit
        """
        submission = self._load_owned(submission_id, actor)
        ensure_transition("submission", SUBMISSION_TRANSITIONS, submission.status, SubmissionStatus.PENDING)

        old_key = submission.storage_path
        new_key = submission_object_key(submission.user_id, upload)
        guard_id = self._store_video(new_key, upload, reason=f"revision of submission {submission.id} not committed")
        video_url = self.storage.signed_url(new_key)

        submission.storage_path = new_key
        submission.file_name = upload.filename
        submission.video_url = video_url
        submission.status = SubmissionStatus.PENDING
        submission.revisions_used = (submission.revisions_used or 0) + 1
        submission.append_history("revision_submitted")
        self._settle_guard(guard_id)
        if old_key and old_key != new_key:
            self._retire_object(old_key, reason=f"superseded by revision of submission {submission.id}")
        self.db.flush()

        self._notify_brand(submission, "revision_submitted", "A creator submitted a revised video.")
        logger.info(f"Submission {submission.id} revised ({submission.revisions_used} revisions used)")
        return submission

    def _store_video(self, key: str, upload: VideoUpload, reason: str) -> str:
        """Commit a pending cleanup guard for `key` on a side session, then upload. Returns the guard id."""
        with Session(bind=self.db.get_bind()) as side:
            guard = StorageCleanup(storage_path=key, reason=reason, status=CleanupStatus.PENDING, attempts=0)
            side.add(guard)
            side.commit()
            guard_id = guard.id
        self.storage.upload(key, upload)
        return guard_id

    def _settle_guard(self, guard_id: str) -> None:
        guard = self.db.get(StorageCleanup, guard_id)
        guard.status = CleanupStatus.DONE
        guard.resolved_at = utcnow()

    def _retire_object(self, key: str, reason: str) -> StorageCleanup:
        cleanup = StorageCleanup(storage_path=key, reason=reason, status=CleanupStatus.PENDING, attempts=0)
        self.db.add(cleanup)
        logger.info(f"Queued {key} for deletion: {reason}")
        return cleanup

    def update_status(self, submission_id: str, new_status: SubmissionStatus, actor_user_id: str) -> Submission:
        """
        Owner-initiated status write. The submission must belong to
        `actor_user_id`; the transition must be legal. The owner is notified
        with a message chosen by status.
        """
        submission = self._load(submission_id)
        if submission.user_id != actor_user_id:
            raise PermissionDeniedError("You don't have permission to update this submission")

        ensure_transition("submission", SUBMISSION_TRANSITIONS, submission.status, new_status)
        submission.status = new_status
        submission.updated_at = utcnow()
        self.db.flush()

        self._notify_creator(submission, new_status)
        logger.info(f"Submission {submission.id} -> {new_status.value} (owner update)")
        return submission

    # ------------------------------------------------------------------
    # brand operations
    # ------------------------------------------------------------------

    def review(
        self,
        submission_id: str,
        actor: Principal,
        new_status: SubmissionStatus,
        feedback: Optional[str] = None,
    ) -> Submission:
        """Project owner (or admin) moves the submission along its review path."""
        if new_status not in REVIEW_STATUSES:
            raise ValidationError(f"'{new_status.value}' is not a review decision")

        submission = self._load(submission_id)
        if submission.project.owner_id != actor.user_id and not actor.is_admin:
            raise PermissionDeniedError("Not authorized to review this submission")

        ensure_transition("submission", SUBMISSION_TRANSITIONS, submission.status, new_status)
        submission.status = new_status
        if feedback:
            submission.feedback = feedback
        submission.append_history(new_status.value)
        self.db.flush()

        self._notify_creator(submission, new_status)
        logger.info(f"Submission {submission.id} -> {new_status.value} (review by {actor.user_id})")
        return submission
