from __future__ import annotations


class AuthorizationError(Exception):
    """Raised when a row-level policy denies an operation."""

    def __init__(self, resource: str, action: str) -> None:
        self.resource = resource
        self.action = action
        super().__init__(f"Operation '{action}' denied for resource '{resource}'")
