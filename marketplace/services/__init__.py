"""
Workflow components.

Each class takes its collaborators (session, notification service, gateway,
storage, release queue) in its constructor; request dependencies in
marketplace.dependencies and the sweep loop in services.reconciliation build them.
"""
from marketplace.services.notifications import NotificationService
from marketplace.services.applications import ApplicationRegistry
from marketplace.services.submissions import SubmissionTracker
from marketplace.services.orders import OrderWorkflow
from marketplace.services.payments import PaymentBridge, StripeGateway
from marketplace.services.storage import S3Storage, VideoUpload
from marketplace.services.messaging import ConversationService
from marketplace.services.release_queue import PaymentReleaseQueue

__all__ = [
    "NotificationService",
    "ApplicationRegistry",
    "SubmissionTracker",
    "OrderWorkflow",
    "PaymentBridge",
    "StripeGateway",
    "S3Storage",
    "VideoUpload",
    "ConversationService",
    "PaymentReleaseQueue",
]
