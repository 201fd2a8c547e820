from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

JSONB = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade():
    op.create_table(
        "trip",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("points_to_win", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "team",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("trip_id", sa.String(), sa.ForeignKey("trip.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_table(
        "player",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("trip_id", sa.String(), sa.ForeignKey("trip.id", ondelete="CASCADE"), nullable=False),
        sa.Column("team_id", sa.String(), sa.ForeignKey("team.id"), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("handicap_index", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_player_trip_id", "player", ["trip_id"])

    op.create_table(
        "course",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
    )
    op.create_table(
        "tee_set",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("course_id", sa.String(), sa.ForeignKey("course.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slope_rating", sa.Float(), nullable=True),
        sa.Column("course_rating", sa.Float(), nullable=False),
        sa.Column("par", sa.Integer(), nullable=False),
        sa.Column("hole_handicaps", JSONB, nullable=True),
        sa.Column("hole_pars", JSONB, nullable=True),
    )

    op.create_table(
        "match",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("trip_id", sa.String(), sa.ForeignKey("trip.id", ondelete="CASCADE"), nullable=False),
        sa.Column("format", sa.String(), nullable=False),
        sa.Column("team_a_id", sa.String(), sa.ForeignKey("team.id"), nullable=False),
        sa.Column("team_b_id", sa.String(), sa.ForeignKey("team.id"), nullable=False),
        sa.Column("tee_set_id", sa.String(), sa.ForeignKey("tee_set.id"), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="not_started"),
        sa.Column("points_value", sa.Float(), nullable=False, server_default="1"),
        sa.Column("match_order", sa.Integer(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_match_trip_id", "match", ["trip_id"])

    op.create_table(
        "match_participant",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("match_id", sa.String(), sa.ForeignKey("match.id", ondelete="CASCADE"), nullable=False),
        sa.Column("side", sa.String(), nullable=False),
        sa.Column("player_ids", JSONB, nullable=False),
        sa.Column("course_handicaps", JSONB, nullable=False),
    )
    op.create_table(
        "hole_result",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("match_id", sa.String(), sa.ForeignKey("match.id", ondelete="CASCADE"), nullable=False),
        sa.Column("hole_number", sa.Integer(), nullable=False),
        sa.Column("winner", sa.String(), nullable=False, server_default="unplayed"),
        sa.Column("strokes", sa.JSON(), nullable=True),
        sa.Column("net", sa.JSON(), nullable=True),
        sa.UniqueConstraint("match_id", "hole_number", name="uq_hole_result_match_hole"),
    )
    op.create_table(
        "scoring_event",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("match_id", sa.String(), sa.ForeignKey("match.id", ondelete="CASCADE"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("hole_number", sa.Integer(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("previous_state", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("synced_at", sa.DateTime(), nullable=True),
        sa.Column("device_id", sa.String(), nullable=True),
    )
    op.create_index(
        "ix_scoring_event_match_order", "scoring_event", ["match_id", "created_at", "seq"]
    )

    op.create_table(
        "push_subscription",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("endpoint", sa.String(), nullable=False, unique=True),
        sa.Column("p256dh", sa.String(), nullable=False),
        sa.Column("auth", sa.String(), nullable=False),
        sa.Column("content_encoding", sa.String(), nullable=False, server_default="aes128gcm"),
        sa.Column("trip_id", sa.String(), sa.ForeignKey("trip.id", ondelete="CASCADE"), nullable=True),
        sa.Column("player_id", sa.String(), sa.ForeignKey("player.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )


def downgrade():
    op.drop_table("push_subscription")
    op.drop_index("ix_scoring_event_match_order", table_name="scoring_event")
    op.drop_table("scoring_event")
    op.drop_table("hole_result")
    op.drop_table("match_participant")
    op.drop_index("ix_match_trip_id", table_name="match")
    op.drop_table("match")
    op.drop_table("tee_set")
    op.drop_table("course")
    op.drop_index("ix_player_trip_id", table_name="player")
    op.drop_table("player")
    op.drop_table("team")
    op.drop_table("trip")
