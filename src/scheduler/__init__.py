"""Background polling — periodic generation, dispatch, overdue and retention passes."""

from src.scheduler.engine import BackgroundPoller

__all__ = ["BackgroundPoller"]
