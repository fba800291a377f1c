"""Event tracking: sanitization, batched trackers, transports and ingestion."""

from giftghost.services.tracking.sanitize import sanitize_properties
from giftghost.services.tracking.tracker import ClientTracker, FileIdStore, ServerTracker, Tracker
from giftghost.services.tracking.transport import DatabaseTransport, HttpTransport, Transport

__all__ = [
    "sanitize_properties",
    "Tracker",
    "ServerTracker",
    "ClientTracker",
    "FileIdStore",
    "Transport",
    "HttpTransport",
    "DatabaseTransport",
]
