"""Create dao schema for the governance ledger.

Revision adds:
- dao.ledger_state (single row: owner, treasury balance, proposal count)
- dao.proposals (keyed by permanent proposal index)
- dao.proposal_voters (token ids consumed per proposal)

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001_dao_ledger"
down_revision = None
branch_labels = None
depends_on = None

# uint256
_UINT256 = sa.Numeric(78, 0)


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS dao")

    op.create_table(
        "ledger_state",
        sa.Column("id", sa.SmallInteger(), primary_key=True, nullable=False),
        sa.Column("owner", sa.Text(), nullable=False),
        sa.Column("treasury_balance", _UINT256, nullable=False, server_default=sa.text("0")),
        sa.Column("num_proposals", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.CheckConstraint("id = 1", name="ck_ledger_state_singleton"),
        sa.CheckConstraint("treasury_balance >= 0", name="ck_ledger_state_balance_nonneg"),
        schema="dao",
    )

    op.create_table(
        "proposals",
        sa.Column("proposal_index", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("nft_token_id", _UINT256, nullable=False),
        sa.Column("deadline", sa.BigInteger(), nullable=False),
        sa.Column("yay_votes", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("nay_votes", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("executed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.CheckConstraint("proposal_index >= 0", name="ck_proposals_index_nonneg"),
        sa.CheckConstraint(
            "yay_votes >= 0 AND nay_votes >= 0", name="ck_proposals_votes_nonneg"
        ),
        schema="dao",
    )

    op.create_table(
        "proposal_voters",
        sa.Column(
            "proposal_index",
            sa.Integer(),
            sa.ForeignKey("dao.proposals.proposal_index", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("token_id", _UINT256, nullable=False),
        sa.PrimaryKeyConstraint("proposal_index", "token_id", name="pk_proposal_voters"),
        schema="dao",
    )

    # executed 只能 false → true
    op.execute(
        """
        CREATE OR REPLACE FUNCTION dao.fn_guard_proposal_update() RETURNS trigger AS $$
        BEGIN
            IF OLD.executed AND NOT NEW.executed THEN
                RAISE EXCEPTION 'proposal % cannot be un-executed', OLD.proposal_index;
            END IF;
            IF OLD.deadline <> NEW.deadline OR OLD.nft_token_id <> NEW.nft_token_id THEN
                RAISE EXCEPTION 'proposal % is immutable apart from tallies', OLD.proposal_index;
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_guard_proposal_update
        BEFORE UPDATE ON dao.proposals
        FOR EACH ROW EXECUTE FUNCTION dao.fn_guard_proposal_update();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_guard_proposal_update ON dao.proposals")
    op.execute("DROP FUNCTION IF EXISTS dao.fn_guard_proposal_update()")
    op.drop_table("proposal_voters", schema="dao")
    op.drop_table("proposals", schema="dao")
    op.drop_table("ledger_state", schema="dao")
    op.execute("DROP SCHEMA IF EXISTS dao")
