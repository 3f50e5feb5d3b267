"""Blueprint exports."""

from . import dashboard, habits

__all__ = ["dashboard", "habits"]
