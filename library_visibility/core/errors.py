"""Exceptions raised by the exclusion engine's synchronous entry points."""


class ExclusionError(Exception):
    """Base class for exclusion engine errors."""


class UnknownEntityTypeError(ExclusionError, ValueError):
    """Caller passed an entity type that is not one of the library types."""

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Unknown entity type: {entity_type!r}")
