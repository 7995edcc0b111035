"""
Atomic transaction handlers for booking admission and approval.

Transaction handlers encapsulate multi-step writes that must execute
atomically against a consistent view of active elevator bookings:
1. SERIALIZABLE isolation plus an elevator advisory lock (PostgreSQL)
2. SELECT FOR UPDATE on the rows being read for conflicts
3. Status-guarded UPDATEs so concurrent approval paths cannot double-apply
4. Notifications only after commit

Transaction handlers:
- BookingTransaction: submit, intake, quick_approve, decide
- transition_to_approved / transition_to_rejected: shared guarded transitions
"""

from engine.transactions.approval import transition_to_approved, transition_to_rejected
from engine.transactions.booking_transaction import BookingTransaction

__all__ = ["BookingTransaction", "transition_to_approved", "transition_to_rejected"]
