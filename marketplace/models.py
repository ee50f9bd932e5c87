"""
SQLAlchemy ORM models for the brand/creator marketplace workflows.
Design principles:
1. Explicit constraints prevent invalid states at DB level
   (one application per user and target is a UNIQUE constraint, not a query)
2. Enums plus transition tables make every lifecycle a finite state machine
3. String UUID keys (ids are handed to the browser and to the payment gateway)
4. Timestamps track audit trail
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, Text, DateTime, Enum, ForeignKey, Index, JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
import uuid
from marketplace.database import Base


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ======================================
# ENUMS - Finite State Machines
# ======================================

class TargetType(str, enum.Enum):
    """What a creator applies to."""
    CONTEST = "contest"
    PROJECT = "project"


class ApplicationStatus(str, enum.Enum):
    """
    Application lifecycle.
    - PENDING -> APPROVED (target owner accepts)
    - PENDING -> REJECTED (target owner declines)
    Cancellation deletes the row regardless of status.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SubmissionStatus(str, enum.Enum):
    """
    Submission review lifecycle.

    Creator-driven: spark code / TikTok link delivery and revision resubmission.
    Brand-driven: requesting spark code or link, verifying it, approving,
    rejecting or requesting a revision.
    The only cycle is PENDING <-> REVISION_REQUESTED.
    """
    PENDING = "pending"
    SPARK_REQUESTED = "spark_requested"
    SPARK_RECEIVED = "spark_received"
    SPARK_VERIFIED = "spark_verified"
    TIKTOK_LINK_REQUESTED = "tiktokLink_requested"
    TIKTOK_LINK_RECEIVED = "tiktokLink_received"
    TIKTOK_LINK_VERIFIED = "tiktokLink_verified"
    REVISION_REQUESTED = "revision_requested"
    APPROVED = "approved"
    REJECTED = "rejected"


class OrderStatus(str, enum.Enum):
    """
    Order lifecycle.
    - PENDING -> IN_PROGRESS (creator approves)
    - PENDING | IN_PROGRESS -> COMPLETED (payment release is queued)
    - PENDING -> REJECTED (creator declines, held payment is canceled)
    """
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


class NotificationStatus(str, enum.Enum):
    UNREAD = "unread"
    READ = "read"


class PaymentStatus(str, enum.Enum):
    """
    Local mirror of the gateway's payment state. The gateway is authoritative.
    """
    PENDING = "pending"
    HELD_IN_ESCROW = "held_in_escrow"
    COMPLETED = "completed"
    CANCELED = "canceled"
    RELEASED_TO_CREATOR = "released_to_creator"
    REJECTED = "rejected"


class ReleaseTaskStatus(str, enum.Enum):
    """
    Durable payment-release task.
    - PENDING -> SUCCEEDED (transfer created)
    - PENDING -> PENDING (attempt failed, rescheduled)
    - PENDING -> FAILED (attempts exhausted)
    """
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CleanupStatus(str, enum.Enum):
    PENDING = "pending"
    DONE = "done"


# ======================================
# TRANSITION TABLES
# ======================================

APPLICATION_TRANSITIONS = {
    ApplicationStatus.PENDING: {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED},
    ApplicationStatus.APPROVED: set(),
    ApplicationStatus.REJECTED: set(),
}

SUBMISSION_TRANSITIONS = {
    SubmissionStatus.PENDING: {
        # Creator replaces the video before anyone reviewed it
        SubmissionStatus.PENDING,
        SubmissionStatus.SPARK_REQUESTED,
        SubmissionStatus.TIKTOK_LINK_REQUESTED,
        SubmissionStatus.REVISION_REQUESTED,
        SubmissionStatus.APPROVED,
        SubmissionStatus.REJECTED,
    },
    SubmissionStatus.SPARK_REQUESTED: {SubmissionStatus.SPARK_RECEIVED},
    SubmissionStatus.SPARK_RECEIVED: {SubmissionStatus.SPARK_VERIFIED},
    SubmissionStatus.SPARK_VERIFIED: {
        SubmissionStatus.APPROVED,
        SubmissionStatus.REVISION_REQUESTED,
    },
    SubmissionStatus.TIKTOK_LINK_REQUESTED: {SubmissionStatus.TIKTOK_LINK_RECEIVED},
    SubmissionStatus.TIKTOK_LINK_RECEIVED: {SubmissionStatus.TIKTOK_LINK_VERIFIED},
    SubmissionStatus.TIKTOK_LINK_VERIFIED: {
        SubmissionStatus.APPROVED,
        SubmissionStatus.REVISION_REQUESTED,
    },
    SubmissionStatus.REVISION_REQUESTED: {SubmissionStatus.PENDING},
    SubmissionStatus.APPROVED: set(),
    SubmissionStatus.REJECTED: set(),
}

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.IN_PROGRESS,
        OrderStatus.COMPLETED,
        OrderStatus.REJECTED,
    },
    OrderStatus.IN_PROGRESS: {OrderStatus.COMPLETED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.REJECTED: set(),
}


# ==================
# MODELS
# ==================

class Contest(Base):
    """
    Brand-run competition. Only the fields the workflows touch are mapped;
    prize and timeline data stay with the contest editor.
    """
    __tablename__ = "contests"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(128), nullable=False, index=True, comment="Brand user id")
    title = Column(String(200), nullable=False)
    status = Column(String(32), nullable=False, default="pending_payment")
    payment_status = Column(String(32), nullable=True, comment="Mirror of the funding payment")
    applicant_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Contest(id={self.id}, status={self.status})>"


class Project(Base):
    """
    Brand-run content commission, optionally invitation based.

    invitations: {creator_id: {"status", "invitedAt", "respondedAt", "acceptedAt"}}
    participants: creator ids that accepted or were approved
    """
    __tablename__ = "projects"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(128), nullable=False, index=True, comment="Brand user id")
    title = Column(String(200), nullable=False)
    status = Column(String(32), nullable=False, default="active")
    applicant_count = Column(Integer, nullable=False, default=0)
    invitations = Column(JSON, nullable=False, default=dict)
    participants = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    submissions = relationship("Submission", back_populates="project", lazy="select")

    def __repr__(self):
        return f"<Project(id={self.id}, owner_id={self.owner_id})>"


class Application(Base):
    """
    A creator's application to a contest or project.

    Constraints:
    - (user_id, target_id): UNIQUE. Concurrent applies race on the index,
      the loser gets IntegrityError (surfaced as 409).
    - target_id is not a FK: it points at contests or projects depending on target_type.
    """
    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("user_id", "target_id", name="uq_applications_user_target"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(128), nullable=False, index=True)
    target_type = Column(Enum(TargetType, name="target_type_enum"), nullable=False)
    target_id = Column(String(32), nullable=False, index=True)
    status = Column(
        Enum(ApplicationStatus, name="application_status_enum"),
        default=ApplicationStatus.PENDING,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Application(id={self.id}, user_id={self.user_id}, target_id={self.target_id})>"


class Submission(Base):
    """
    Creator content submitted to a project.

    Never deleted. Superseded video assets are removed from storage on revision;
    revision_history is append-only: [{"timestamp": iso8601, "action": str}, ...]
    """
    __tablename__ = "submissions"
    __table_args__ = (
        Index("ix_submissions_project_status", "project_id", "status"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(128), nullable=False, index=True, comment="Creator")
    project_id = Column(
        String(32),
        ForeignKey("projects.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    video_url = Column(Text, nullable=True, comment="Signed read URL")
    storage_path = Column(String(500), nullable=True, comment="Object key of current video")
    file_name = Column(String(255), nullable=True)
    spark_code = Column(String(255), nullable=True)
    tiktok_link = Column(String(500), nullable=True)
    feedback = Column(Text, nullable=True, comment="Latest reviewer feedback")
    status = Column(
        Enum(SubmissionStatus, name="submission_status_enum"),
        default=SubmissionStatus.PENDING,
        nullable=False,
        index=True,
    )
    revision_history = Column(JSON, nullable=False, default=list)
    revisions_used = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    project = relationship("Project", back_populates="submissions", lazy="joined")

    def append_history(self, action: str, when: datetime | None = None) -> None:
        """Append an audit entry. Reassigns the list so the JSON column is flagged dirty."""
        when = when or utcnow()
        self.revision_history = list(self.revision_history or []) + [
            {"timestamp": when.isoformat(), "action": action}
        ]

    def __repr__(self):
        return f"<Submission(id={self.id}, user_id={self.user_id}, status={self.status.value})>"


class Order(Base):
    """
    Direct creator-service purchase by a brand.
    Created by the checkout flow; mutated through approve/complete/reject.
    """
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(128), nullable=False, index=True, comment="Brand that placed the order")
    creator_id = Column(String(128), nullable=False, index=True)
    creator_connect_account_id = Column(
        String(255),
        nullable=True,
        comment="Gateway connected account receiving the payout"
    )
    package_type = Column(String(64), nullable=True)
    total_price = Column(Integer, nullable=False, default=0, comment="Minor currency units")
    status = Column(
        Enum(OrderStatus, name="order_status_enum"),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )
    payment_status = Column(String(32), nullable=True)
    payment_released_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(String(128), nullable=True)
    completion_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    milestones = relationship(
        "OrderMilestone",
        back_populates="order",
        lazy="select",
        order_by="OrderMilestone.created_at.desc()",
        cascade="all, delete-orphan",
    )
    release_task = relationship(
        "PaymentReleaseTask",
        back_populates="order",
        uselist=False,
        lazy="select",
    )

    def __repr__(self):
        return f"<Order(id={self.id}, status={self.status.value})>"


class OrderMilestone(Base):
    """Append-only order log (order_approved, order_completed, order_rejected...)."""
    __tablename__ = "order_milestones"

    id = Column(String(32), primary_key=True, default=new_id)
    order_id = Column(
        String(32),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    milestone_type = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False, default="completed")
    description = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    order = relationship("Order", back_populates="milestones")


class Notification(Base):
    """
    Per-recipient notification. Only status/read_at (and responded, for
    invitations) change after creation.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_status", "user_id", "status"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(128), nullable=False, index=True, comment="Recipient")
    type = Column(String(64), nullable=False)
    title = Column(String(200), nullable=True)
    message = Column(Text, nullable=False)
    status = Column(
        Enum(NotificationStatus, name="notification_status_enum"),
        default=NotificationStatus.UNREAD,
        nullable=False,
    )
    related_id = Column(String(32), nullable=True)
    related_to = Column(String(32), nullable=True, comment="order, submission, project, ...")
    responded = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def read(self) -> bool:
        return self.status == NotificationStatus.READ

    def __repr__(self):
        return f"<Notification(id={self.id}, user_id={self.user_id}, type={self.type})>"


class PaymentRecord(Base):
    """
    Mirror document of a gateway payment intent. Exists to cache gateway
    state locally; the gateway wins on any disagreement.
    """
    __tablename__ = "payments"

    id = Column(String(32), primary_key=True, default=new_id)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    checkout_session_id = Column(String(255), nullable=True, unique=True)
    status = Column(
        Enum(PaymentStatus, name="payment_status_enum"),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )
    stripe_payment_status = Column(String(64), nullable=True)
    amount = Column(Integer, nullable=False, default=0, comment="Minor currency units")
    currency = Column(String(8), nullable=False, default="usd")
    payer_id = Column(String(128), nullable=True)
    creator_id = Column(String(128), nullable=True)
    contest_id = Column(String(32), ForeignKey("contests.id"), nullable=True, index=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=True, index=True)
    transfer_id = Column(String(255), nullable=True)
    processed_by = Column(String(128), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<PaymentRecord(id={self.id}, status={self.status.value})>"


class Conversation(Base):
    """
    Brand/creator message thread.
    unread_counts: {user_id: int} for every participant.
    """
    __tablename__ = "conversations"

    id = Column(String(32), primary_key=True, default=new_id)
    participants = Column(JSON, nullable=False, default=list)
    unread_counts = Column(JSON, nullable=False, default=dict)
    last_message = Column(Text, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    messages = relationship(
        "Message",
        back_populates="conversation",
        lazy="select",
        order_by="Message.created_at",
        cascade="all, delete-orphan",
    )
    members = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        lazy="select",
        cascade="all, delete-orphan",
    )


class ConversationParticipant(Base):
    """Indexed membership rows mirroring Conversation.participants, for per-user lookups."""
    __tablename__ = "conversation_participants"

    conversation_id = Column(
        String(32),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id = Column(String(128), primary_key=True, index=True)

    conversation = relationship("Conversation", back_populates="members")


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(32), primary_key=True, default=new_id)
    conversation_id = Column(
        String(32),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender_id = Column(String(128), nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")


class PaymentReleaseTask(Base):
    """
    Durable queue entry for releasing an order's escrowed payment.

    One task per order. The sweep picks PENDING tasks whose run_after has
    passed, attempts the release once per sweep and either marks SUCCEEDED,
    reschedules with backoff, or gives up as FAILED after max_attempts.
    """
    __tablename__ = "payment_release_tasks"
    __table_args__ = (
        Index("ix_release_tasks_status_run_after", "status", "run_after"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    order_id = Column(
        String(32),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    status = Column(
        Enum(ReleaseTaskStatus, name="release_task_status_enum"),
        default=ReleaseTaskStatus.PENDING,
        nullable=False,
    )
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False)
    run_after = Column(DateTime(timezone=True), nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    order = relationship("Order", back_populates="release_task")

    def __repr__(self):
        return f"<PaymentReleaseTask(order_id={self.order_id}, status={self.status.value}, attempts={self.attempts})>"


class StorageCleanup(Base):
    """
    Storage object queued for deletion by the reconciliation sweep.
    Rows are either upload guards (settled to DONE by the committing request)
    or superseded revision videos.
    """
    __tablename__ = "storage_cleanups"

    id = Column(String(32), primary_key=True, default=new_id)
    storage_path = Column(String(500), nullable=False)
    reason = Column(String(200), nullable=True)
    status = Column(
        Enum(CleanupStatus, name="cleanup_status_enum"),
        default=CleanupStatus.PENDING,
        nullable=False,
        index=True,
    )
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
