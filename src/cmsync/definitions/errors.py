"""Definition document errors."""


class DefinitionError(Exception):
    """Raised when the collection definition document cannot be used."""
