"""Context snapshots, caching, git access, audit trail and error log."""

from .models import ContextData, EditorDocument

__all__ = ["ContextData", "EditorDocument"]
