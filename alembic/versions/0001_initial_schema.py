"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 10:12:40.118204

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create releases, tracks, sales, nfts and mint_jobs tables."""
    op.create_table(
        "releases",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("artist_address", sa.String(length=64), nullable=False),
        sa.Column("artist_name", sa.String(length=255), nullable=True),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("total_editions", sa.Integer(), nullable=False),
        sa.Column("sold_editions", sa.Integer(), nullable=False),
        sa.Column("is_minted", sa.Boolean(), nullable=False),
        sa.Column("mint_fee_paid", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_releases_artist_address", "releases", ["artist_address"])

    op.create_table(
        "tracks",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("release_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("track_number", sa.Integer(), nullable=False),
        sa.Column("metadata_cid", sa.String(length=255), nullable=True),
        sa.Column("metadata_url", sa.String(length=512), nullable=True),
        sa.Column("sold_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["release_id"], ["releases.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tracks_release_id", "tracks", ["release_id"])

    op.create_table(
        "sales",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("release_id", sa.String(length=64), nullable=False),
        sa.Column("track_id", sa.String(length=64), nullable=False),
        sa.Column("nft_token_id", sa.String(length=64), nullable=True),
        sa.Column("edition_number", sa.Integer(), nullable=True),
        sa.Column("buyer_address", sa.String(length=64), nullable=False),
        sa.Column("seller_address", sa.String(length=64), nullable=True),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("platform_fee", sa.Float(), nullable=False),
        sa.Column("tx_hash", sa.String(length=64), nullable=True),
        sa.Column("sale_type", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["release_id"], ["releases.id"]),
        sa.ForeignKeyConstraint(["track_id"], ["tracks.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sales_release_id", "sales", ["release_id"])
    op.create_index("ix_sales_track_id", "sales", ["track_id"])
    op.create_index("ix_sales_nft_token_id", "sales", ["nft_token_id"])
    op.create_index("ix_sales_created_at", "sales", ["created_at"])

    op.create_table(
        "nfts",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("nft_token_id", sa.String(length=64), nullable=False),
        sa.Column("track_id", sa.String(length=64), nullable=False),
        sa.Column("release_id", sa.String(length=64), nullable=True),
        sa.Column("edition_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("owner_address", sa.String(length=64), nullable=True),
        sa.Column("tx_hash", sa.String(length=64), nullable=True),
        sa.Column("minted_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["release_id"], ["releases.id"]),
        sa.ForeignKeyConstraint(["track_id"], ["tracks.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    # Token ids are globally unique: re-recording a minted unit must fail
    op.create_index("ix_nfts_nft_token_id", "nfts", ["nft_token_id"], unique=True)
    op.create_index("ix_nfts_track_id", "nfts", ["track_id"])
    op.create_index("ix_nfts_release_id", "nfts", ["release_id"])
    op.create_index("ix_nfts_status", "nfts", ["status"])

    op.create_table(
        "mint_jobs",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("release_id", sa.String(length=64), nullable=False),
        sa.Column("artist_address", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("total_units", sa.Integer(), nullable=False),
        sa.Column("minted_count", sa.Integer(), nullable=False),
        sa.Column("job_data", sa.JSON(), nullable=False),
        sa.Column("error", sa.String(), nullable=True),
        sa.Column("seen", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["release_id"], ["releases.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_mint_jobs_release_id", "mint_jobs", ["release_id"])
    op.create_index("ix_mint_jobs_artist_address", "mint_jobs", ["artist_address"])
    op.create_index("ix_mint_jobs_status", "mint_jobs", ["status"])
    op.create_index("ix_mint_jobs_created_at", "mint_jobs", ["created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("mint_jobs")
    op.drop_table("nfts")
    op.drop_table("sales")
    op.drop_table("tracks")
    op.drop_table("releases")
