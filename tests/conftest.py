"""
Shared fixtures: a throwaway SQLite database, fake gateway/storage clients on
app.state, bearer-token helpers and row factories for seeding.
"""
import os

os.environ["SECRET_KEY"] = "test-secret-key-" + "x" * 32
os.environ["DATABASE_URL"] = "sqlite:///./test_marketplace.db"
os.environ["BACKGROUND_WORKERS_ENABLED"] = "false"
os.environ["PAYMENT_RELEASE_DELAY_SECONDS"] = "5"
os.environ["PAYMENT_RELEASE_MAX_ATTEMPTS"] = "3"
os.environ["PAYMENT_RELEASE_RETRY_SECONDS"] = "60"

import pytest
from fastapi.testclient import TestClient

from marketplace import models
from marketplace.auth import create_access_token
from marketplace.database import Base, SessionLocal, engine
from marketplace.errors import UpstreamServiceError
from marketplace.main import app


class FakeGateway:
    """In-memory stand-in for StripeGateway. Set `fail` to make every call raise."""

    def __init__(self):
        self.fail = False
        self.calls = []
        self._counter = 0
        self.transfers = {}

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_test_{self._counter}"

    def _record(self, name: str, **kwargs):
        self.calls.append((name, kwargs))
        if self.fail:
            raise UpstreamServiceError(f"Payment gateway error during {name}")

    def capture(self, payment_intent_id: str) -> dict:
        self._record("capture", payment_intent_id=payment_intent_id)
        return {"id": payment_intent_id, "status": "succeeded"}

    def cancel(self, payment_intent_id: str) -> dict:
        self._record("cancel", payment_intent_id=payment_intent_id)
        return {"id": payment_intent_id, "status": "canceled"}

    def create_checkout_session(self, amount, description, success_url, cancel_url, metadata) -> dict:
        self._record("checkout", amount=amount, metadata=metadata)
        session_id = self._next("cs")
        return {"id": session_id, "url": f"https://checkout.test/{session_id}"}

    def transfer(self, amount, destination, metadata, idempotency_key) -> dict:
        self._record(
            "transfer",
            amount=amount,
            destination=destination,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        # a repeated key replays the original transfer, like Stripe
        if idempotency_key not in self.transfers:
            self.transfers[idempotency_key] = {"id": self._next("tr")}
        return self.transfers[idempotency_key]

    def names(self) -> list:
        return [name for name, _ in self.calls]


class FakeStorage:
    """In-memory stand-in for S3Storage."""

    def __init__(self):
        self.objects = {}
        self.fail_uploads = False
        self.fail_deletes = False

    def upload(self, key, upload) -> None:
        if self.fail_uploads:
            raise UpstreamServiceError("Failed to store video")
        self.objects[key] = upload.data

    def delete(self, key) -> None:
        if self.fail_deletes:
            raise UpstreamServiceError(f"Failed to delete {key}")
        self.objects.pop(key, None)

    def signed_url(self, key) -> str:
        return f"https://storage.test/{key}?signature=abc"


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def client(gateway, storage):
    app.state.payment_gateway = gateway
    app.state.storage = storage
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def auth(user_id: str, is_admin: bool = False) -> dict:
    token = create_access_token({"sub": user_id, "is_admin": is_admin})
    return {"Authorization": f"Bearer {token}"}


class Seed:
    """Insert committed rows the way the rest of the platform would have written them."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def contest(self, owner_id="brand-1", **kw):
        return self._save(models.Contest(owner_id=owner_id, title=kw.pop("title", "Summer Contest"), **kw))

    def project(self, owner_id="brand-1", **kw):
        return self._save(models.Project(
            owner_id=owner_id,
            title=kw.pop("title", "Launch Video"),
            invitations=kw.pop("invitations", {}),
            participants=kw.pop("participants", []),
            **kw,
        ))

    def submission(self, project, user_id="creator-1", status=models.SubmissionStatus.PENDING, **kw):
        return self._save(models.Submission(
            user_id=user_id,
            project_id=project.id,
            status=status,
            storage_path=kw.pop("storage_path", f"submissions/{user_id}/original.mp4"),
            video_url=kw.pop("video_url", "https://storage.test/original"),
            file_name=kw.pop("file_name", "original.mp4"),
            revision_history=kw.pop("revision_history", []),
            **kw,
        ))

    def order(self, user_id="brand-1", creator_id="creator-1", status=models.OrderStatus.PENDING, **kw):
        return self._save(models.Order(
            user_id=user_id,
            creator_id=creator_id,
            status=status,
            total_price=kw.pop("total_price", 5000),
            creator_connect_account_id=kw.pop("creator_connect_account_id", "acct_creator_1"),
            **kw,
        ))

    def payment(self, status=models.PaymentStatus.HELD_IN_ESCROW, **kw):
        return self._save(models.PaymentRecord(
            status=status,
            amount=kw.pop("amount", 5000),
            stripe_payment_intent_id=kw.pop("stripe_payment_intent_id", "pi_test_1"),
            **kw,
        ))

    def notification(self, user_id="creator-1", **kw):
        return self._save(models.Notification(
            user_id=user_id,
            type=kw.pop("type", "project_invitation"),
            message=kw.pop("message", "You have been invited to a project"),
            status=kw.pop("status", models.NotificationStatus.UNREAD),
            **kw,
        ))

    def application(self, user_id="creator-1", target=None, target_type=models.TargetType.PROJECT, **kw):
        return self._save(models.Application(
            user_id=user_id,
            target_type=target_type,
            target_id=target.id,
            status=kw.pop("status", models.ApplicationStatus.PENDING),
        ))


@pytest.fixture
def seed(db):
    return Seed(db)


@pytest.fixture
def auth_headers():
    return auth
