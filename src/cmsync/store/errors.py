"""Collection store errors."""


class StoreError(Exception):
    """Base exception for collection store operations."""


class SiteConnectionError(StoreError):
    """Raised when the site cannot be reached or rejects the connection."""


class CollectionNotFoundError(StoreError):
    """Raised when a referenced collection does not exist on the site."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Collection '{name}' was not found")
        self.name = name
