"""Value types shared by the exclusion engine."""

from enum import Enum
from typing import NamedTuple

from library_visibility.core.errors import UnknownEntityTypeError


class EntityType(str, Enum):
    """The seven library entity types."""

    SCENE = "scene"
    PERFORMER = "performer"
    STUDIO = "studio"
    TAG = "tag"
    GROUP = "group"
    GALLERY = "gallery"
    IMAGE = "image"

    @property
    def plural(self) -> str:
        return _PLURALS[self]

    @classmethod
    def parse(cls, value: "str | EntityType") -> "EntityType":
        """Accept a singular or plural type name ("tag" / "tags")."""
        if isinstance(value, EntityType):
            return value
        normalized = value.strip().lower()
        for member in cls:
            if normalized in (member.value, _PLURALS[member]):
                return member
        raise UnknownEntityTypeError(value)


_PLURALS = {
    EntityType.SCENE: "scenes",
    EntityType.PERFORMER: "performers",
    EntityType.STUDIO: "studios",
    EntityType.TAG: "tags",
    EntityType.GROUP: "groups",
    EntityType.GALLERY: "galleries",
    EntityType.IMAGE: "images",
}

# Types a UserContentRestriction may target
RESTRICTABLE_TYPES = frozenset({
    EntityType.TAG,
    EntityType.STUDIO,
    EntityType.PERFORMER,
    EntityType.GROUP,
    EntityType.GALLERY,
})

# Types whose restrictions honour the hierarchy depth setting
HIERARCHICAL_TYPES = frozenset({EntityType.TAG, EntityType.STUDIO})


class ExclusionReason(str, Enum):
    """Why an entity is excluded, highest priority first."""

    RESTRICTED = "restricted"
    HIDDEN = "hidden"
    CASCADE = "cascade"
    EMPTY = "empty"

    @property
    def is_direct(self) -> bool:
        return self in (ExclusionReason.RESTRICTED, ExclusionReason.HIDDEN)


class RestrictionMode(str, Enum):
    EXCLUDE = "EXCLUDE"
    INCLUDE = "INCLUDE"


class ExclusionKey(NamedTuple):
    """Natural key of an exclusion row within one user's set.

    An empty instance_id means the exclusion applies to every instance.
    """

    entity_type: EntityType
    entity_id: str
    instance_id: str = ""

    @property
    def is_global(self) -> bool:
        return self.instance_id == ""

    def as_global(self) -> "ExclusionKey":
        return ExclusionKey(self.entity_type, self.entity_id, "")


# Ordered mapping of key -> reason; insertion order is write order
ExclusionMap = dict[ExclusionKey, ExclusionReason]


def is_covered(key: ExclusionKey, keys) -> bool:
    """True when ``keys`` holds ``key`` itself or the global key for the same entity."""
    return key in keys or key.as_global() in keys


def drop_covered(exclusions: ExclusionMap) -> ExclusionMap:
    """Remove scoped keys whose global key is also present. Order is kept."""
    return {
        key: reason
        for key, reason in exclusions.items()
        if key.is_global or key.as_global() not in exclusions
    }
