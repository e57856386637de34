"""
Counsel Dispatch Services

Matches a user's request for legal help to exactly one on-duty counselor.

- CounselorDirectory: counselor records and the eligibility filter
- Dispatcher: request creation and broadcast snapshot
- Arbiter: the guarded claim (one winner per request)
- BookingQueue: scheduled fallback and the appointment pull queue
- LifecycleManager: completion, cancellation, capacity release

Maintenance (never required for correctness):
- ExpiryReaper: flips stale unclaimed requests to expired
- CapacityReconciler: checks active_requests against live assignments
"""

from .state_machine import RequestStateMachine
from .directory import CounselorDirectory
from .dispatcher import Dispatcher
from .arbiter import Arbiter
from .booking_queue import BookingQueue
from .lifecycle import LifecycleManager
from .chat_sessions import ChatSessionService
from .expiry import ExpiryReaper
from .reconciler import CapacityReconciler

__all__ = [
    'RequestStateMachine',
    'CounselorDirectory',
    'Dispatcher',
    'Arbiter',
    'BookingQueue',
    'LifecycleManager',
    'ChatSessionService',
    # Maintenance
    'ExpiryReaper',
    'CapacityReconciler',
]
