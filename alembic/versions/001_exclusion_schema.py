"""Create library graph, user fact and exclusion tables.

Library entities are keyed by (id, instance_id) and soft-deleted via
deleted_at. user_excluded_entities is written only by the exclusion engine.

Revision ID: 001_exclusion_schema
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa

revision = "001_exclusion_schema"
down_revision = None
branch_labels = None
depends_on = None

# (table, label column, has studio_id)
ENTITY_TABLES = [
    ("scenes", "title", True),
    ("performers", "name", False),
    ("tags", "name", False),
    ("groups", "name", False),
    ("galleries", "title", False),
    ("images", "title", True),
]

# (table, left entity, right entity); index goes on the right side
JUNCTION_TABLES = [
    ("scene_performers", "scene", "performer"),
    ("scene_tags", "scene", "tag"),
    ("scene_inherited_tags", "scene", "tag"),
    ("scene_groups", "scene", "group"),
    ("scene_galleries", "scene", "gallery"),
    ("image_galleries", "image", "gallery"),
    ("image_performers", "image", "performer"),
    ("performer_tags", "performer", "tag"),
    ("studio_tags", "studio", "tag"),
    ("group_tags", "group", "tag"),
]


def upgrade() -> None:
    for table, label, has_studio in ENTITY_TABLES:
        columns = [
            sa.Column("id", sa.String(64), nullable=False),
            sa.Column("instance_id", sa.String(64), nullable=False),
            sa.Column(label, sa.String(500)),
        ]
        if has_studio:
            columns.append(sa.Column("studio_id", sa.String(64)))
        columns.append(sa.Column("deleted_at", sa.DateTime(timezone=True)))
        op.create_table(table, *columns, sa.PrimaryKeyConstraint("id", "instance_id"))
        if has_studio:
            op.create_index(f"idx_{table}_studio", table, ["studio_id", "instance_id"])

    op.create_table(
        "studios",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(500)),
        sa.Column("parent_id", sa.String(64)),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint("id", "instance_id"),
    )
    op.create_index("idx_studios_parent", "studios", ["parent_id", "instance_id"])

    op.create_table(
        "tag_parents",
        sa.Column("tag_id", sa.String(64), nullable=False),
        sa.Column("parent_id", sa.String(64), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=False),
        sa.PrimaryKeyConstraint("tag_id", "parent_id", "instance_id"),
    )
    op.create_index("idx_tag_parents_parent", "tag_parents", ["parent_id", "instance_id"])

    for table, left, right in JUNCTION_TABLES:
        op.create_table(
            table,
            sa.Column(f"{left}_id", sa.String(64), nullable=False),
            sa.Column(f"{left}_instance_id", sa.String(64), nullable=False),
            sa.Column(f"{right}_id", sa.String(64), nullable=False),
            sa.Column(f"{right}_instance_id", sa.String(64), nullable=False),
            sa.PrimaryKeyConstraint(
                f"{left}_id", f"{left}_instance_id", f"{right}_id", f"{right}_instance_id"
            ),
        )
        op.create_index(f"idx_{table}_{right}", table, [f"{right}_id", f"{right}_instance_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(100), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "user_hidden_entities",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=False, server_default=""),
        sa.Column("hidden_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("user_id", "entity_type", "entity_id", "instance_id", name="uq_user_hidden_entity"),
    )
    op.create_index("idx_user_hidden_entities_user", "user_hidden_entities", ["user_id"])

    op.create_table(
        "user_content_restrictions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("mode", sa.String(10), nullable=False),
        sa.Column("entity_ids", sa.Text, nullable=False, server_default="[]"),
        sa.Column("depth", sa.Integer),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("user_id", "entity_type", name="uq_user_restriction_type"),
    )

    op.create_table(
        "user_excluded_entities",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=False, server_default=""),
        sa.Column("reason", sa.String(20), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("user_id", "entity_type", "entity_id", "instance_id", name="uq_user_excluded_entity"),
    )
    op.create_index("idx_user_excluded_user_type", "user_excluded_entities", ["user_id", "entity_type"])
    op.create_index("idx_user_excluded_type_entity", "user_excluded_entities", ["entity_type", "entity_id"])
    op.create_index(
        "idx_user_excluded_user_type_reason", "user_excluded_entities", ["user_id", "entity_type", "reason"]
    )

    op.create_table(
        "user_entity_stats",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("instance_id", sa.String(64), nullable=False, server_default=""),
        sa.Column("excluded_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("visible_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("user_id", "entity_type", "instance_id", name="uq_user_entity_stats"),
    )


def downgrade() -> None:
    op.drop_table("user_entity_stats")
    op.drop_table("user_excluded_entities")
    op.drop_table("user_content_restrictions")
    op.drop_table("user_hidden_entities")
    op.drop_table("users")
    for table, _, _ in reversed(JUNCTION_TABLES):
        op.drop_table(table)
    op.drop_table("tag_parents")
    op.drop_table("studios")
    for table, _, _ in reversed(ENTITY_TABLES):
        op.drop_table(table)
