"""
Notification fan-out.

Every workflow transition that affects the counterpart actor goes through
NotificationService.create. Recipients can only flip status to read, one at a
time or in bulk. Invitation responses are the one multi-document write that
must land all-or-nothing; the service validates everything before the first
write so a failure leaves nothing to roll back beyond the request transaction.
"""
import logging
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from marketplace.auth import Principal
from marketplace.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from marketplace.models import Notification, NotificationStatus, Project, utcnow

logger = logging.getLogger(__name__)

INVITATION_RESPONSES = ("accepted", "declined")
INVITATION_TYPE = "project_invitation"


class NotificationService:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        user_id: str,
        type: str,
        message: str,
        title: Optional[str] = None,
        related_id: Optional[str] = None,
        related_to: Optional[str] = None,
    ) -> Notification:
        """Append an unread notification for `user_id`."""
        if not user_id:
            raise ValidationError("Notification recipient is required")

        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            status=NotificationStatus.UNREAD,
            related_id=related_id,
            related_to=related_to,
            created_at=utcnow(),
        )
        self.db.add(notification)
        self.db.flush()
        logger.info(f"Notification {notification.id} ({type}) created for user {user_id}")
        return notification

    def list_for_user(self, user_id: str, page: int = 1, limit: int = 50):
        """Newest first. Returns (notifications, total, unread)."""
        base = self.db.query(Notification).filter(Notification.user_id == user_id)
        total = base.count()
        unread = base.filter(Notification.status == NotificationStatus.UNREAD).count()
        items = base.order_by(
            Notification.created_at.desc()
        ).offset((page - 1) * limit).limit(limit).all()
        return items, total, unread

    def mark_read(self, notification_id: str, actor: Principal) -> Notification:
        notification = self.db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError("Notification not found")
        if notification.user_id != actor.user_id:
            raise PermissionDeniedError("Not authorized to update this notification")

        if notification.status != NotificationStatus.READ:
            notification.status = NotificationStatus.READ
            notification.read_at = utcnow()
            self.db.flush()
        return notification

    def unread_count(self, user_id: str) -> int:
        return self.db.query(func.count(Notification.id)).filter(
            Notification.user_id == user_id,
            Notification.status == NotificationStatus.UNREAD,
        ).scalar()

    def mark_all_read(self, user_id: str) -> tuple[int, int]:
        """
        Flip every unread notification of `user_id` to read in one batch.
        Returns (updated, remaining_unread); remaining is re-counted after the
        write so callers can verify the batch landed.
        """
        unread = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.status == NotificationStatus.UNREAD,
        ).all()

        now = utcnow()
        for notification in unread:
            notification.status = NotificationStatus.READ
            notification.read_at = now
        self.db.flush()

        remaining = self.unread_count(user_id)
        logger.info(f"Marked {len(unread)} notifications read for {user_id}, {remaining} remaining")
        return len(unread), remaining

    def respond_to_invitation(
        self,
        notification_id: str,
        project_id: str,
        user_id: str,
        response: str,
        creator_name: str,
    ) -> Notification:
        """
        Record a creator's answer to a project invitation.

        Writes, all inside the request transaction:
        1. invitation notification -> read + responded
        2. project.invitations[user_id] -> status/respondedAt (+acceptedAt)
        3. project.participants += user_id (accepted only, no duplicates)
        4. new notification for the project owner

        Returns the owner's notification.
        """
        if response not in INVITATION_RESPONSES:
            raise ValidationError("Invalid response")
        if not creator_name:
            raise ValidationError("Creator name is required")

        notification = self.db.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError("Notification not found")
        if notification.type != INVITATION_TYPE or notification.related_id != project_id:
            raise NotFoundError("Invitation not found")
        if notification.responded:
            raise ConflictError("Invitation already answered")

        project = self.db.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found")
        if user_id not in (project.invitations or {}):
            raise PermissionDeniedError("You were not invited to this project")

        now = utcnow()

        notification.status = NotificationStatus.READ
        notification.responded = True
        notification.read_at = now

        invitations = dict(project.invitations or {})
        entry = dict(invitations.get(user_id) or {})
        entry["status"] = response
        entry["respondedAt"] = now.isoformat()
        if response == "accepted":
            entry["acceptedAt"] = now.isoformat()
            participants = list(project.participants or [])
            if user_id not in participants:
                project.participants = participants + [user_id]
        invitations[user_id] = entry
        project.invitations = invitations

        owner_notification = self.create(
            user_id=project.owner_id,
            type="application_accepted" if response == "accepted" else "application_rejected",
            title=f"Invitation {response.capitalize()}",
            message=f"{creator_name} has {response} your project invitation",
            related_id=project.id,
            related_to="project",
        )
        logger.info(f"User {user_id} {response} invitation to project {project_id}")
        return owner_notification
