from .event_loop import fast_forward
from .exhaust_callbacks import exhaust_callbacks
from .notifier import SILENT, ScriptedNotifier

__all__ = (
    "SILENT",
    "ScriptedNotifier",
    "exhaust_callbacks",
    "fast_forward",
)
