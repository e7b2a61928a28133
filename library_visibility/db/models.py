"""
SQLAlchemy ORM models for the media library and per-user visibility state.

============================================================================
MULTI-INSTANCE KEYS
============================================================================
The library is synced from one or more upstream instances that share an ID
space, so every library entity is keyed by (id, instance_id) and every
junction row carries the instance of both ends. Entities removed upstream
are soft-deleted (deleted_at set) and are invisible everywhere.

User facts (written by the settings UI, read by the exclusion engine):
- UserHiddenEntity: one row per manually hidden item
- UserContentRestriction: INCLUDE / EXCLUDE rule per entity type

Engine output (written ONLY by the exclusion engine):
- UserExcludedEntity: one row per (user, type, id, instance) that is hidden
- UserEntityStats: per-type excluded / visible counts for dashboards
============================================================================
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Text, DateTime, ForeignKey, Index,
    UniqueConstraint, PrimaryKeyConstraint,
)

from library_visibility.db.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==================== Library Entities ====================

class Scene(Base):
    """Video scene synced from an upstream instance."""

    __tablename__ = "scenes"

    id = Column(String(64), primary_key=True)
    instance_id = Column(String(64), primary_key=True)
    title = Column(String(500))
    studio_id = Column(String(64))  # Same instance as the scene
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_scenes_studio", "studio_id", "instance_id"),
    )


class Performer(Base):
    """Performer appearing in scenes and images."""

    __tablename__ = "performers"

    id = Column(String(64), primary_key=True)
    instance_id = Column(String(64), primary_key=True)
    name = Column(String(500))
    deleted_at = Column(DateTime(timezone=True))


class Studio(Base):
    """Studio; studios form a parent/child hierarchy within an instance."""

    __tablename__ = "studios"

    id = Column(String(64), primary_key=True)
    instance_id = Column(String(64), primary_key=True)
    name = Column(String(500))
    parent_id = Column(String(64))
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_studios_parent", "parent_id", "instance_id"),
    )


class Tag(Base):
    """Tag; parents live in tag_parents (a tag can have several)."""

    __tablename__ = "tags"

    id = Column(String(64), primary_key=True)
    instance_id = Column(String(64), primary_key=True)
    name = Column(String(500))
    deleted_at = Column(DateTime(timezone=True))


class TagParent(Base):
    """Many-to-many tag parent relationships."""

    __tablename__ = "tag_parents"

    tag_id = Column(String(64), primary_key=True)
    parent_id = Column(String(64), primary_key=True)
    instance_id = Column(String(64), primary_key=True)

    __table_args__ = (
        Index("idx_tag_parents_parent", "parent_id", "instance_id"),
    )


class Group(Base):
    """Group (movie / series) collecting scenes."""

    __tablename__ = "groups"

    id = Column(String(64), primary_key=True)
    instance_id = Column(String(64), primary_key=True)
    name = Column(String(500))
    deleted_at = Column(DateTime(timezone=True))


class Gallery(Base):
    """Image gallery."""

    __tablename__ = "galleries"

    id = Column(String(64), primary_key=True)
    instance_id = Column(String(64), primary_key=True)
    title = Column(String(500))
    deleted_at = Column(DateTime(timezone=True))


class Image(Base):
    """Image, optionally attributed to a studio."""

    __tablename__ = "images"

    id = Column(String(64), primary_key=True)
    instance_id = Column(String(64), primary_key=True)
    title = Column(String(500))
    studio_id = Column(String(64))  # Same instance as the image
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_images_studio", "studio_id", "instance_id"),
    )


# ==================== Junction Tables ====================

class ScenePerformer(Base):
    __tablename__ = "scene_performers"

    scene_id = Column(String(64), nullable=False)
    scene_instance_id = Column(String(64), nullable=False)
    performer_id = Column(String(64), nullable=False)
    performer_instance_id = Column(String(64), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("scene_id", "scene_instance_id", "performer_id", "performer_instance_id"),
        Index("idx_scene_performers_performer", "performer_id", "performer_instance_id"),
    )


class SceneTag(Base):
    """Tags applied directly to a scene."""

    __tablename__ = "scene_tags"

    scene_id = Column(String(64), nullable=False)
    scene_instance_id = Column(String(64), nullable=False)
    tag_id = Column(String(64), nullable=False)
    tag_instance_id = Column(String(64), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("scene_id", "scene_instance_id", "tag_id", "tag_instance_id"),
        Index("idx_scene_tags_tag", "tag_id", "tag_instance_id"),
    )


class SceneInheritedTag(Base):
    """Tags a scene inherits through the tag hierarchy (filled by library sync)."""

    __tablename__ = "scene_inherited_tags"

    scene_id = Column(String(64), nullable=False)
    scene_instance_id = Column(String(64), nullable=False)
    tag_id = Column(String(64), nullable=False)
    tag_instance_id = Column(String(64), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("scene_id", "scene_instance_id", "tag_id", "tag_instance_id"),
        Index("idx_scene_inherited_tags_tag", "tag_id", "tag_instance_id"),
    )


class SceneGroup(Base):
    __tablename__ = "scene_groups"

    scene_id = Column(String(64), nullable=False)
    scene_instance_id = Column(String(64), nullable=False)
    group_id = Column(String(64), nullable=False)
    group_instance_id = Column(String(64), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("scene_id", "scene_instance_id", "group_id", "group_instance_id"),
        Index("idx_scene_groups_group", "group_id", "group_instance_id"),
    )


class SceneGallery(Base):
    __tablename__ = "scene_galleries"

    scene_id = Column(String(64), nullable=False)
    scene_instance_id = Column(String(64), nullable=False)
    gallery_id = Column(String(64), nullable=False)
    gallery_instance_id = Column(String(64), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("scene_id", "scene_instance_id", "gallery_id", "gallery_instance_id"),
        Index("idx_scene_galleries_gallery", "gallery_id", "gallery_instance_id"),
    )


class ImageGallery(Base):
    __tablename__ = "image_galleries"

    image_id = Column(String(64), nullable=False)
    image_instance_id = Column(String(64), nullable=False)
    gallery_id = Column(String(64), nullable=False)
    gallery_instance_id = Column(String(64), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("image_id", "image_instance_id", "gallery_id", "gallery_instance_id"),
        Index("idx_image_galleries_gallery", "gallery_id", "gallery_instance_id"),
    )


class ImagePerformer(Base):
    __tablename__ = "image_performers"

    image_id = Column(String(64), nullable=False)
    image_instance_id = Column(String(64), nullable=False)
    performer_id = Column(String(64), nullable=False)
    performer_instance_id = Column(String(64), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("image_id", "image_instance_id", "performer_id", "performer_instance_id"),
        Index("idx_image_performers_performer", "performer_id", "performer_instance_id"),
    )


class PerformerTag(Base):
    __tablename__ = "performer_tags"

    performer_id = Column(String(64), nullable=False)
    performer_instance_id = Column(String(64), nullable=False)
    tag_id = Column(String(64), nullable=False)
    tag_instance_id = Column(String(64), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("performer_id", "performer_instance_id", "tag_id", "tag_instance_id"),
        Index("idx_performer_tags_tag", "tag_id", "tag_instance_id"),
    )


class StudioTag(Base):
    __tablename__ = "studio_tags"

    studio_id = Column(String(64), nullable=False)
    studio_instance_id = Column(String(64), nullable=False)
    tag_id = Column(String(64), nullable=False)
    tag_instance_id = Column(String(64), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("studio_id", "studio_instance_id", "tag_id", "tag_instance_id"),
        Index("idx_studio_tags_tag", "tag_id", "tag_instance_id"),
    )


class GroupTag(Base):
    __tablename__ = "group_tags"

    group_id = Column(String(64), nullable=False)
    group_instance_id = Column(String(64), nullable=False)
    tag_id = Column(String(64), nullable=False)
    tag_instance_id = Column(String(64), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("group_id", "group_instance_id", "tag_id", "tag_instance_id"),
        Index("idx_group_tags_tag", "tag_id", "tag_instance_id"),
    )


# ==================== Users and Facts ====================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class UserHiddenEntity(Base):
    """An item a user hid by hand. instance_id is '' when not instance-specific."""

    __tablename__ = "user_hidden_entities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    entity_type = Column(String(20), nullable=False)  # scene, performer, studio, tag, group, gallery, image
    entity_id = Column(String(64), nullable=False)
    instance_id = Column(String(64), nullable=False, default="")
    hidden_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", "entity_id", "instance_id", name="uq_user_hidden_entity"),
        Index("idx_user_hidden_entities_user", "user_id"),
    )


class UserContentRestriction(Base):
    """
    Policy rule restricting one entity type for a user.

    entity_type is plural (tags, studios, performers, groups, galleries).
    entity_ids is a JSON-encoded array of IDs. depth only applies to tags and
    studios: 0/NULL lists IDs as-is, N expands N hierarchy levels, negative
    expands all descendants.
    """

    __tablename__ = "user_content_restrictions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    entity_type = Column(String(20), nullable=False)
    mode = Column(String(10), nullable=False)  # EXCLUDE or INCLUDE
    entity_ids = Column(Text, nullable=False, default="[]")
    depth = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", name="uq_user_restriction_type"),
    )


class UserExcludedEntity(Base):
    """Materialized exclusion row. Written only by the exclusion engine."""

    __tablename__ = "user_excluded_entities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(String(64), nullable=False)
    instance_id = Column(String(64), nullable=False, default="")  # '' = every instance
    reason = Column(String(20), nullable=False)  # restricted, hidden, cascade, empty
    computed_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", "entity_id", "instance_id", name="uq_user_excluded_entity"),
        Index("idx_user_excluded_user_type", "user_id", "entity_type"),
        Index("idx_user_excluded_type_entity", "entity_type", "entity_id"),
        Index("idx_user_excluded_user_type_reason", "user_id", "entity_type", "reason"),
    )


class UserEntityStats(Base):
    """Per-type exclusion counts published after every full recompute."""

    __tablename__ = "user_entity_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    entity_type = Column(String(20), nullable=False)
    instance_id = Column(String(64), nullable=False, default="")
    excluded_count = Column(Integer, nullable=False, default=0)
    visible_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", "instance_id", name="uq_user_entity_stats"),
    )
