from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Float,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from .db import Base


class Trip(Base):
    __tablename__ = "trip"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    points_to_win = Column(Float, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class Team(Base):
    __tablename__ = "team"
    id = Column(String, primary_key=True)
    trip_id = Column(String, ForeignKey("trip.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    position = Column(Integer, nullable=False, default=0)


class Player(Base):
    __tablename__ = "player"
    id = Column(String, primary_key=True)
    trip_id = Column(String, ForeignKey("trip.id", ondelete="CASCADE"), nullable=False)
    team_id = Column(String, ForeignKey("team.id"), nullable=True)
    name = Column(String, nullable=False)
    handicap_index = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (Index("ix_player_trip_id", "trip_id"),)


class Course(Base):
    __tablename__ = "course"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)


class TeeSet(Base):
    __tablename__ = "tee_set"
    id = Column(String, primary_key=True)
    course_id = Column(String, ForeignKey("course.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    slope_rating = Column(Float, nullable=True)
    course_rating = Column(Float, nullable=False)
    par = Column(Integer, nullable=False)
    hole_handicaps = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    hole_pars = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)


class Match(Base):
    __tablename__ = "match"
    id = Column(String, primary_key=True)
    trip_id = Column(String, ForeignKey("trip.id", ondelete="CASCADE"), nullable=False)
    format = Column(String, nullable=False)  # singles | fourball | foursomes | greensomes | stroke_play
    team_a_id = Column(String, ForeignKey("team.id"), nullable=False)
    team_b_id = Column(String, ForeignKey("team.id"), nullable=False)
    tee_set_id = Column(String, ForeignKey("tee_set.id"), nullable=True)
    status = Column(String, nullable=False, default="not_started")
    points_value = Column(Float, nullable=False, default=1.0)
    match_order = Column(Integer, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    last_synced_at = Column(DateTime, nullable=True)

    __table_args__ = (Index("ix_match_trip_id", "trip_id"),)


class MatchParticipant(Base):
    __tablename__ = "match_participant"
    id = Column(String, primary_key=True)
    match_id = Column(String, ForeignKey("match.id", ondelete="CASCADE"), nullable=False)
    side = Column(String, nullable=False)  # "A" | "B"
    player_ids = Column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False
    )
    # course handicaps at match creation, keyed by player id
    course_handicaps = Column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )


class HoleResult(Base):
    __tablename__ = "hole_result"
    id = Column(String, primary_key=True)
    match_id = Column(String, ForeignKey("match.id", ondelete="CASCADE"), nullable=False)
    hole_number = Column(Integer, nullable=False)
    winner = Column(String, nullable=False, default="unplayed")
    strokes = Column(JSON, nullable=True)
    net = Column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("match_id", "hole_number", name="uq_hole_result_match_hole"),
    )


class ScoringEvent(Base):
    __tablename__ = "scoring_event"
    id = Column(String, primary_key=True)
    match_id = Column(String, ForeignKey("match.id", ondelete="CASCADE"), nullable=False)
    seq = Column(Integer, nullable=False, default=0)
    type = Column(String, nullable=False)
    hole_number = Column(Integer, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    previous_state = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    synced_at = Column(DateTime, nullable=True)
    device_id = Column(String, nullable=True)

    __table_args__ = (Index("ix_scoring_event_match_order", "match_id", "created_at", "seq"),)


class PushSubscription(Base):
    __tablename__ = "push_subscription"
    id = Column(String, primary_key=True)
    endpoint = Column(String, nullable=False, unique=True)
    p256dh = Column(String, nullable=False)
    auth = Column(String, nullable=False)
    content_encoding = Column(String, nullable=False, default="aes128gcm")
    trip_id = Column(String, ForeignKey("trip.id", ondelete="CASCADE"), nullable=True)
    player_id = Column(String, ForeignKey("player.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
