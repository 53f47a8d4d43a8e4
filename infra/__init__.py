"""Infrastructure modules for autoexit-monitor"""

from .metrics import MetricsRecorder, PassStats  # noqa: F401
from .notifications import Notification, NotificationCenter, NotificationSeverity  # noqa: F401

__all__ = [
	"MetricsRecorder",
	"PassStats",
	"Notification",
	"NotificationCenter",
	"NotificationSeverity",
]
