"""initial calmora schema: users, 2fa, puzzle

Revision ID: 4b1e9c2d7a10
Revises:
Create Date: 2026-10-17 10:12:41.503219

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4b1e9c2d7a10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

difficulty = sa.Enum("easy", "medium", "hard", name="difficulty")
stress_level = sa.Enum("low", "moderate", "high", name="stresslevel")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # 2FA: una fila por usuario
    op.create_table(
        "user_2fa",
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("secret", sa.String(64), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("enabled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("NOT is_enabled OR secret IS NOT NULL", name="ck_user_2fa_enabled_has_secret"),
    )
    op.create_table(
        "recovery_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("user_2fa.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("code_hash", sa.String(255), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_recovery_codes_user_id", "recovery_codes", ["user_id"])

    # puzzle
    op.create_table(
        "game_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("puzzle_word", sa.String(64), nullable=False),
        sa.Column("difficulty", difficulty, nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("time_taken", sa.Integer(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("solved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_game_sessions_user_id", "game_sessions", ["user_id"])
    op.create_index("ix_game_sessions_created_at", "game_sessions", ["created_at"])

    op.create_table(
        "stress_reports",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("stress_level", stress_level, nullable=False),
        sa.Column("weekly_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("coping_tip", sa.Text(), nullable=False),
        sa.Column("ai_analysis", sa.Text(), nullable=True),
        sa.Column("badges", sa.JSON(), nullable=True),
        sa.Column("fallback", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("game_session_id", sa.String(36), sa.ForeignKey("game_sessions.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_stress_reports_user_id", "stress_reports", ["user_id"])
    op.create_index("ix_stress_reports_created_at", "stress_reports", ["created_at"])

    op.create_table(
        "user_game_stats",
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_puzzles_solved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_solve_time", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_played_date", sa.Date(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("user_game_stats")
    op.drop_index("ix_stress_reports_created_at", table_name="stress_reports")
    op.drop_index("ix_stress_reports_user_id", table_name="stress_reports")
    op.drop_table("stress_reports")
    op.drop_index("ix_game_sessions_created_at", table_name="game_sessions")
    op.drop_index("ix_game_sessions_user_id", table_name="game_sessions")
    op.drop_table("game_sessions")
    op.drop_index("ix_recovery_codes_user_id", table_name="recovery_codes")
    op.drop_table("recovery_codes")
    op.drop_table("user_2fa")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    stress_level.drop(op.get_bind(), checkfirst=True)
    difficulty.drop(op.get_bind(), checkfirst=True)
