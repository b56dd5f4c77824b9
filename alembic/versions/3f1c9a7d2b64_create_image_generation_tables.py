"""create_image_generation_tables

Revision ID: 3f1c9a7d2b64
Revises:
Create Date: 2026-10-19 10:12:41.208733

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c9a7d2b64"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

generation_status = sa.Enum(
    "QUEUED",
    "IN_PROGRESS",
    "COMPLETED",
    "FAILED",
    "CANCELLED",
    name="generationstatus",
)


def upgrade() -> None:
    """Create image_generations and image_generation_outputs tables."""
    op.create_table(
        "image_generations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("provider_id", sa.String(length=100), nullable=False),
        sa.Column("provider_type", sa.String(length=50), nullable=False),
        sa.Column("status", generation_status, nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("input_sources", sa.JSON(), nullable=False),
        sa.Column("request_options", sa.JSON(), nullable=False),
        sa.Column("queue_request_id", sa.String(length=255), nullable=True),
        sa.Column("status_url", sa.String(), nullable=True),
        sa.Column("response_url", sa.String(), nullable=True),
        sa.Column("cancel_url", sa.String(), nullable=True),
        sa.Column("logs", sa.JSON(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_image_generations_provider_id"), "image_generations", ["provider_id"]
    )
    op.create_index(op.f("ix_image_generations_status"), "image_generations", ["status"])
    op.create_index(op.f("ix_image_generations_created_at"), "image_generations", ["created_at"])

    op.create_table(
        "image_generation_outputs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("generation_id", sa.Uuid(), nullable=False),
        sa.Column("output_index", sa.Integer(), nullable=False),
        sa.Column("remote_url", sa.String(), nullable=True),
        sa.Column("local_path", sa.String(), nullable=True),
        sa.Column("content_type", sa.String(length=100), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["generation_id"], ["image_generations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "generation_id", "output_index", name="uq_generation_output_index"
        ),
    )
    op.create_index(
        op.f("ix_image_generation_outputs_generation_id"),
        "image_generation_outputs",
        ["generation_id"],
    )


def downgrade() -> None:
    """Drop image generation tables and the status enum."""
    op.drop_index(
        op.f("ix_image_generation_outputs_generation_id"), table_name="image_generation_outputs"
    )
    op.drop_table("image_generation_outputs")
    op.drop_index(op.f("ix_image_generations_created_at"), table_name="image_generations")
    op.drop_index(op.f("ix_image_generations_status"), table_name="image_generations")
    op.drop_index(op.f("ix_image_generations_provider_id"), table_name="image_generations")
    op.drop_table("image_generations")
    generation_status.drop(op.get_bind(), checkfirst=True)
