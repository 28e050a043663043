from app.db.base import Base
from app.models.application import Application
from app.models.assessment import Assessment
from app.models.audit_log import AuditLog
from app.models.decision import Decision
from app.models.interview import Interview
from app.models.person import Person
from app.models.webhook_receipt import WebhookReceipt

__all__ = [
    "Base",
    "Application",
    "Assessment",
    "AuditLog",
    "Decision",
    "Interview",
    "Person",
    "WebhookReceipt",
]
