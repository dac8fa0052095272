"""unique_active_emergency_response

Revision ID: d3a91f6c0e27
Revises: b7e4c2a19d01
Create Date: 2026-10-18 15:00:00.000000
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "d3a91f6c0e27"
down_revision = "b7e4c2a19d01"
branch_labels = None
depends_on = None

ACTIVE_RESPONSE = "related_emergency_id IS NOT NULL AND status != 'cancelled'"


def upgrade() -> None:
    op.create_index(
        "uq_donation_events_active_response",
        "donation_events",
        ["user_auth_id", "related_emergency_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_RESPONSE),
        sqlite_where=sa.text(ACTIVE_RESPONSE),
    )


def downgrade() -> None:
    op.drop_index("uq_donation_events_active_response", table_name="donation_events")
