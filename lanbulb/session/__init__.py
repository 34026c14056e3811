"""
Session engine: request correlation, notification fan-out and music mode.
"""

from lanbulb.session.correlator import PendingRequest, RequestCorrelator
from lanbulb.session.music import MusicModeManager, MusicState
from lanbulb.session.notifications import NotificationDispatcher, Subscription
from lanbulb.session.session import Session

__all__ = [
    "MusicModeManager",
    "MusicState",
    "NotificationDispatcher",
    "PendingRequest",
    "RequestCorrelator",
    "Session",
    "Subscription",
]
