from __future__ import annotations


class NotFoundError(LookupError):
    """A requested row does not exist (or is not visible to the caller)."""
