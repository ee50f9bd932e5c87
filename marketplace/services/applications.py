"""
Application registry: one application per (creator, contest|project).

Uniqueness is the `uq_applications_user_target` constraint; the lookup before
insert only produces a friendlier error. Applicant counters are updated with
single UPDATE statements so concurrent applies/cancels cannot lose a count,
and the decrement is clamped at zero inside the statement.
"""
import logging
from typing import Optional
from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.auth import Principal
from marketplace.errors import ConflictError, NotFoundError, PermissionDeniedError
from marketplace.models import (
    APPLICATION_TRANSITIONS,
    Application,
    ApplicationStatus,
    Contest,
    Project,
    TargetType,
)
from marketplace.services.notifications import NotificationService
from marketplace.services.transitions import ensure_transition

logger = logging.getLogger(__name__)

TARGET_MODELS = {
    TargetType.CONTEST: Contest,
    TargetType.PROJECT: Project,
}


class ApplicationRegistry:
    def __init__(self, db: Session, notifications: NotificationService):
        self.db = db
        self.notifications = notifications

    def _get_target(self, target_type: TargetType, target_id: str):
        target = self.db.get(TARGET_MODELS[target_type], target_id)
        if target is None:
            raise NotFoundError(f"{target_type.value.capitalize()} not found")
        return target

    def find(self, user_id: str, target_id: str) -> Optional[Application]:
        return self.db.query(Application).filter(
            Application.user_id == user_id,
            Application.target_id == target_id,
        ).first()

    def _adjust_applicant_count(self, target_type: TargetType, target_id: str, delta: int) -> None:
        model = TARGET_MODELS[target_type]
        if delta > 0:
            new_value = model.applicant_count + delta
        else:
            new_value = case(
                (model.applicant_count + delta > 0, model.applicant_count + delta),
                else_=0,
            )
        self.db.query(model).filter(model.id == target_id).update(
            {model.applicant_count: new_value},
            synchronize_session="fetch",
        )

    def apply(self, user_id: str, target_type: TargetType, target_id: str) -> Application:
        """
        Create a pending application and bump the target's applicant count.
        Duplicate (user, target) -> ConflictError (409).
        """
        self._get_target(target_type, target_id)

        if self.find(user_id, target_id) is not None:
            raise ConflictError(f"You have already applied to this {target_type.value}")

        application = Application(
            user_id=user_id,
            target_type=target_type,
            target_id=target_id,
            status=ApplicationStatus.PENDING,
        )
        self.db.add(application)
        try:
            self.db.flush()
        except IntegrityError:
            # Lost the race against a concurrent apply; request transaction rolls back
            raise ConflictError(f"You have already applied to this {target_type.value}")

        self._adjust_applicant_count(target_type, target_id, +1)

        self.notifications.create(
            user_id=user_id,
            type=f"{target_type.value}_application",
            message="Your application has been submitted for review. "
                    "We'll notify you once it's approved.",
            related_id=target_id,
            related_to=target_type.value,
        )
        logger.info(f"Application {application.id} created: user {user_id} -> {target_type.value} {target_id}")
        return application

    def ensure_applied(self, user_id: str, target_type: TargetType, target_id: str) -> Application:
        """Return the existing application or create one (used by submission creation)."""
        existing = self.find(user_id, target_id)
        if existing is not None:
            return existing
        return self.apply(user_id, target_type, target_id)

    def cancel(self, user_id: str, target_id: str) -> str:
        """
        Delete the user's application to `target_id` and decrement the
        target's applicant count (never below zero). Returns the deleted id.
        A second cancel finds nothing and raises NotFoundError.
        """
        application = self.find(user_id, target_id)
        if application is None:
            raise NotFoundError("Application not found")

        application_id = application.id
        target_type = application.target_type
        self.db.delete(application)
        self.db.flush()

        self._adjust_applicant_count(target_type, target_id, -1)
        logger.info(f"Application {application_id} canceled by user {user_id}")
        return application_id

    def check_status(self, user_id: str, target_id: str) -> dict:
        application = self.find(user_id, target_id)
        if application is None:
            return {"hasApplied": False}
        return {
            "hasApplied": True,
            "applicationStatus": application.status.value,
            "applicationId": application.id,
        }

    def review(self, application_id: str, actor: Principal, new_status: ApplicationStatus) -> Application:
        """Target owner (or admin) approves or rejects a pending application."""
        application = self.db.get(Application, application_id)
        if application is None:
            raise NotFoundError("Application not found")

        target = self._get_target(application.target_type, application.target_id)
        if target.owner_id != actor.user_id and not actor.is_admin:
            raise PermissionDeniedError("Not authorized to review this application")

        ensure_transition("application", APPLICATION_TRANSITIONS, application.status, new_status)
        application.status = new_status

        if new_status == ApplicationStatus.APPROVED and application.target_type == TargetType.PROJECT:
            participants = list(target.participants or [])
            if application.user_id not in participants:
                target.participants = participants + [application.user_id]

        message = (
            f"Your application to \"{target.title}\" has been approved!"
            if new_status == ApplicationStatus.APPROVED
            else f"Your application to \"{target.title}\" was not accepted."
        )
        self.notifications.create(
            user_id=application.user_id,
            type=f"application_{new_status.value}",
            message=message,
            related_id=application.target_id,
            related_to=application.target_type.value,
        )
        self.db.flush()
        logger.info(f"Application {application.id} -> {new_status.value}")
        return application
