from enum import Enum


class InputMode(str, Enum):
    """How the user described the gift recipient."""

    DETECTIVE = "DETECTIVE"
    LISTENER = "LISTENER"
    INTERVIEW = "INTERVIEW"


class SessionStatus(str, Enum):
    """AI session state machine (processing -> completed | failed)."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FeedbackType(str, Enum):
    """User judgment on a revealed recommendation."""

    LIKE = "like"
    DISLIKE = "dislike"


class DeviceType(str, Enum):
    """Coarse device class parsed from the User-Agent."""

    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
