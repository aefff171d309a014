"""profile fields, user achievements, last accepted totp step

Revision ID: 9c3f2a8e5b17
Revises: 4b1e9c2d7a10
Create Date: 2026-10-17 16:48:09.112734

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '9c3f2a8e5b17'
down_revision: Union[str, Sequence[str], None] = '4b1e9c2d7a10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # perfil
    op.add_column("users", sa.Column("bio", sa.Text(), nullable=True))
    op.add_column("users", sa.Column("location", sa.String(255), nullable=True))
    op.add_column("users", sa.Column("phone", sa.String(32), nullable=True))
    op.add_column("users", sa.Column("website", sa.String(255), nullable=True))
    op.add_column("users", sa.Column("birthday", sa.Date(), nullable=True))

    op.add_column("user_2fa", sa.Column("last_totp_step", sa.Integer(), nullable=True))

    op.create_table(
        "user_achievements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("achievement_id", sa.String(64), nullable=False),
        sa.Column("achievement_name", sa.String(128), nullable=False),
        sa.Column("achievement_description", sa.String(255), nullable=False),
        sa.Column("achievement_icon", sa.String(16), nullable=False),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),
    )
    op.create_index("ix_user_achievements_user_id", "user_achievements", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_user_achievements_user_id", table_name="user_achievements")
    op.drop_table("user_achievements")
    op.drop_column("user_2fa", "last_totp_step")
    op.drop_column("users", "birthday")
    op.drop_column("users", "website")
    op.drop_column("users", "phone")
    op.drop_column("users", "location")
    op.drop_column("users", "bio")
