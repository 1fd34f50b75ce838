"""add user_profile.timezone

Revision ID: analytics_002
Revises: analytics_001
Create Date: 2026-10-18

Day-part and weekday shares are computed in the user's local time when a
timezone is set; NULL keeps UTC.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "analytics_002"
down_revision = "analytics_001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("user_profile", sa.Column("timezone", sa.Text(), nullable=True))


def downgrade() -> None:
    op.drop_column("user_profile", "timezone")
