"""
Router package initialization.
Exports all routers for marketplace.main registration.
"""
from marketplace.routers import applications, submissions, orders, notifications, payments, conversations

__all__ = ["applications", "submissions", "orders", "notifications", "payments", "conversations"]
