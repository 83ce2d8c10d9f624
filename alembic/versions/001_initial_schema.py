"""initial schema: claim ledger, scores, distributions

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # ── Verified on-chain actions ──
    op.create_table(
        "claim_events",
        sa.Column("source_tx_hash", sa.String(), primary_key=True),
        sa.Column("actor_address", sa.String(), nullable=False),
        sa.Column("action_kind", sa.String(), nullable=False),
        sa.Column("family", sa.String(), nullable=False),
        sa.Column("epoch", sa.Integer(), nullable=False),
        sa.Column("raw_amount", sa.String(), nullable=False, server_default=""),
        sa.Column("points", sa.Float(), nullable=False, server_default="0"),
        sa.Column("message", sa.String(), nullable=False, server_default=""),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_claim_events_actor_address", "claim_events", ["actor_address"])
    op.create_index("ix_claim_events_action_kind", "claim_events", ["action_kind"])
    op.create_index("ix_claim_events_family", "claim_events", ["family"])
    op.create_index("ix_claim_events_epoch", "claim_events", ["epoch"])
    op.create_index("ix_claim_events_created_at", "claim_events", ["created_at"])

    # ── Game score entries ──
    op.create_table(
        "score_entries",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("family", sa.String(), nullable=False),
        sa.Column("player_key", sa.String(), nullable=False),
        sa.Column("week", sa.Integer(), nullable=False),
        sa.Column("score", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("metrics_jsonb", _json(), nullable=True),
        sa.Column("flagged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("flag_reasons_jsonb", _json(), nullable=False),
        sa.Column("checksum_valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("review_status", sa.String(), nullable=False, server_default="NONE"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_score_entries_family", "score_entries", ["family"])
    op.create_index("ix_score_entries_player_key", "score_entries", ["player_key"])
    op.create_index("ix_score_entries_week", "score_entries", ["week"])
    op.create_index("ix_score_entries_flagged", "score_entries", ["flagged"])
    op.create_index("ix_score_entries_review_status", "score_entries", ["review_status"])
    op.create_index("ix_score_entries_created_at", "score_entries", ["created_at"])

    # ── Distributions, leases, per-rank payouts ──
    op.create_table(
        "distributions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("family", sa.String(), nullable=False),
        sa.Column("epoch", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("total_pool_jsonb", _json(), nullable=False),
        sa.Column("per_rank_amounts_jsonb", _json(), nullable=False),
        sa.Column("winners_jsonb", _json(), nullable=False),
        sa.Column("tx_hashes_jsonb", _json(), nullable=False),
        sa.Column("distributed_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("family", "epoch", name="uq_distributions_family_epoch"),
    )
    op.create_index("ix_distributions_family", "distributions", ["family"])
    op.create_index("ix_distributions_epoch", "distributions", ["epoch"])
    op.create_index("ix_distributions_status", "distributions", ["status"])
    op.create_index("ix_distributions_distributed_at", "distributions", ["distributed_at"])

    op.create_table(
        "settlement_attempts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("family", sa.String(), nullable=False),
        sa.Column("epoch", sa.Integer(), nullable=False),
        sa.Column("tx_hash", sa.String(), nullable=True),
        sa.Column("payload_jsonb", _json(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("family", "epoch", name="uq_settlement_attempts_family_epoch"),
    )
    op.create_index("ix_settlement_attempts_family", "settlement_attempts", ["family"])
    op.create_index("ix_settlement_attempts_epoch", "settlement_attempts", ["epoch"])

    op.create_table(
        "prize_payouts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("family", sa.String(), nullable=False),
        sa.Column("epoch", sa.Integer(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("player_key", sa.String(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("asset", sa.String(), nullable=False),
        sa.Column("tx_hash", sa.String(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("family", "epoch", "rank", name="uq_prize_payouts_family_epoch_rank"),
    )
    op.create_index("ix_prize_payouts_family", "prize_payouts", ["family"])
    op.create_index("ix_prize_payouts_epoch", "prize_payouts", ["epoch"])


def downgrade() -> None:
    op.drop_table("prize_payouts")
    op.drop_table("settlement_attempts")
    op.drop_table("distributions")
    op.drop_table("score_entries")
    op.drop_table("claim_events")
