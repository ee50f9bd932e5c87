"""
Pydantic schemas for request/response validation.
Separation of concerns:
- Models (ORM): Database persistence, relationships
- Schemas: API transport, validation, camelCase wire names

The browser client speaks camelCase; every schema accepts and emits it
while Python code keeps snake_case attributes.
"""
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, Generic, TypeVar, List
from datetime import datetime
from marketplace.models import (
    ApplicationStatus,
    NotificationStatus,
    OrderStatus,
    ReleaseTaskStatus,
    SubmissionStatus,
    TargetType,
)

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _required_text(v: Optional[str]) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("Missing required fields")
    return v


# =========================
# APPLICATION SCHEMAS
# ========================

class ApplyRequest(CamelModel):
    target_type: TargetType
    target_id: str

    @field_validator('target_id')
    @classmethod
    def validate_target_id(cls, v: str) -> str:
        return _required_text(v)


class CancelApplicationRequest(CamelModel):
    """Exactly one of contestId / projectId names the target."""
    contest_id: Optional[str] = None
    project_id: Optional[str] = None

    @model_validator(mode='after')
    def exactly_one_target(self):
        if bool(self.contest_id) == bool(self.project_id):
            raise ValueError("Either contestId or projectId is required")
        return self

    @property
    def target_id(self) -> str:
        return self.contest_id or self.project_id


class ApplicationReviewRequest(CamelModel):
    status: ApplicationStatus

    @field_validator('status')
    @classmethod
    def validate_decision(cls, v: ApplicationStatus) -> ApplicationStatus:
        if v == ApplicationStatus.PENDING:
            raise ValueError("Status must be approved or rejected")
        return v


class ApplicationResponse(CamelModel):
    id: str
    user_id: str
    target_type: TargetType
    target_id: str
    status: ApplicationStatus
    created_at: datetime


# ================================
# SUBMISSION SCHEMAS
# ===============================

class SparkCodeRequest(CamelModel):
    spark_code: str
    submission_id: str

    @field_validator('spark_code', 'submission_id')
    @classmethod
    def validate_required(cls, v: str) -> str:
        return _required_text(v)


class TikTokLinkRequest(CamelModel):
    tiktok_link: str
    submission_id: str

    @field_validator('submission_id')
    @classmethod
    def validate_submission_id(cls, v: str) -> str:
        return _required_text(v)

    @field_validator('tiktok_link')
    @classmethod
    def validate_link(cls, v: str) -> str:
        """
        Link constraints:
        - Required, non-empty after strip
        - http(s) only
        - Max 500 chars (matches DB column)
        """
        v = _required_text(v)
        if not v.startswith(("https://", "http://")):
            raise ValueError("TikTok link must be an http(s) URL")
        if len(v) > 500:
            raise ValueError("URL max 500 characters")
        return v


class SubmissionStatusUpdate(CamelModel):
    status: SubmissionStatus
    user_id: str

    @field_validator('user_id')
    @classmethod
    def validate_user_id(cls, v: str) -> str:
        return _required_text(v)


class SubmissionReviewRequest(CamelModel):
    status: SubmissionStatus
    feedback: Optional[str] = None

    @field_validator('feedback')
    @classmethod
    def validate_feedback(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if len(v) > 5000:
            raise ValueError("Feedback max 5,000 characters")
        return v if v else None


class HistoryEntry(BaseModel):
    timestamp: str
    action: str


class SubmissionResponse(CamelModel):
    id: str
    user_id: str
    project_id: str
    video_url: Optional[str] = None
    file_name: Optional[str] = None
    spark_code: Optional[str] = None
    tiktok_link: Optional[str] = None
    feedback: Optional[str] = None
    status: SubmissionStatus
    revision_history: List[HistoryEntry] = []
    revisions_used: int = 0
    created_at: datetime
    updated_at: datetime


# =============================
# ORDER SCHEMAS
# ============================

class OrderCompleteRequest(CamelModel):
    completed_by: str
    completion_notes: Optional[str] = None

    @field_validator('completed_by')
    @classmethod
    def validate_completed_by(cls, v: str) -> str:
        return _required_text(v)


class OrderRejectRequest(CamelModel):
    reason: Optional[str] = None


class MilestoneResponse(CamelModel):
    id: str
    milestone_type: str
    status: str
    description: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class PaymentReleaseResponse(CamelModel):
    status: ReleaseTaskStatus
    attempts: int
    run_after: datetime
    last_error: Optional[str] = None
    completed_at: Optional[datetime] = None


class OrderResponse(CamelModel):
    id: str
    user_id: str
    creator_id: str
    package_type: Optional[str] = None
    total_price: int
    status: OrderStatus
    payment_status: Optional[str] = None
    payment_released_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    completion_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    milestones: List[MilestoneResponse] = []
    payment_release: Optional[PaymentReleaseResponse] = None


# =============================
# NOTIFICATION SCHEMAS
# ============================

class InvitationResponseRequest(CamelModel):
    notification_id: str
    project_id: str
    response: str
    creator_name: Optional[str] = None

    @field_validator('notification_id', 'project_id', 'response')
    @classmethod
    def validate_required(cls, v: str) -> str:
        return _required_text(v)


class NotificationResponse(CamelModel):
    id: str
    type: str
    title: Optional[str] = None
    message: str
    status: NotificationStatus
    read: bool
    related_id: Optional[str] = None
    related_to: Optional[str] = None
    responded: bool = False
    created_at: datetime
    read_at: Optional[datetime] = None


# =============================
# PAYMENT SCHEMAS
# ============================

class PaymentActionRequest(CamelModel):
    """Either id may be given; the service checks they agree when both are."""
    payment_intent_id: Optional[str] = None
    payment_id: Optional[str] = None


class CheckoutSessionRequest(CamelModel):
    amount: int
    contest_id: Optional[str] = None
    order_id: Optional[str] = None

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v


# =============================
# CONVERSATION SCHEMAS
# ============================

class ConversationCreate(CamelModel):
    participant_id: str

    @field_validator('participant_id')
    @classmethod
    def validate_participant(cls, v: str) -> str:
        return _required_text(v)


class MessageCreate(CamelModel):
    text: str

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        v = _required_text(v)
        if len(v) > 10000:
            raise ValueError("Message max 10,000 characters")
        return v


class MessageResponse(CamelModel):
    id: str
    conversation_id: str
    sender_id: str
    text: str
    created_at: datetime


class ConversationResponse(CamelModel):
    id: str
    participants: List[str]
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_count: int = 0


# =======================
# PAGINATION SCHEMAS
# =======================

class PaginationParams(BaseModel):
    """Reusable pagination parameters"""
    page: int = 1
    limit: int = 50

    @field_validator('page')
    @classmethod
    def validate_page(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Page must be >= 1")
        return v

    @field_validator('limit')
    @classmethod
    def validate_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Limit must be >= 1")
        if v > 100:
            raise ValueError("Limit max 100")
        return v


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated response wrapper"""
    data: List[T]
    pagination: dict

    @classmethod
    def create(cls, data: list, page: int, limit: int, total: int, **extra):
        """
        Factory method for consistent pagination metadata.
        Extra keys (e.g. unread counts) are merged into the pagination block.
        """
        return cls(
            data=data,
            pagination={
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
                **extra,
            }
        )
