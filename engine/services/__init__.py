"""
Engine services.

Services own one concern each and receive their collaborators explicitly:
- audit_service: audit trail writer
- notification_service: booking emails
- reconciliation_service: payment ingestion, matching and ledger corrections
- admin_service: booking and user deletion
- fee_classifier / payment_parsing: invoice interpretation
"""

from engine.services.admin_service import AdminService
from engine.services.audit_service import AuditAction, log_audit
from engine.services.notification_service import BookingSummary, NotificationService
from engine.services.reconciliation_service import ReconciliationService

__all__ = [
    "AdminService",
    "AuditAction",
    "BookingSummary",
    "NotificationService",
    "ReconciliationService",
    "log_audit",
]
