from .enums import DeviceType, FeedbackType, InputMode, SessionStatus
from .rate_limit import RateLimitCounter
from .ai_session import AISession
from .user_feedback import UserFeedback
from .tracking_event import TrackingEvent

__all__ = [
    "DeviceType",
    "FeedbackType",
    "InputMode",
    "SessionStatus",
    "RateLimitCounter",
    "AISession",
    "UserFeedback",
    "TrackingEvent",
]
