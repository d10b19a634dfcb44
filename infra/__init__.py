"""Infrastructure modules for steptrader"""

from .metrics import MetricsRecorder  # noqa: F401

__all__ = [
	"MetricsRecorder",
]
