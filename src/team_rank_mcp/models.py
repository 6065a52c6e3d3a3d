"""SQLAlchemy models — teams, rosters, activity logs and persisted rankings."""

from sqlalchemy import Boolean, Column, Float, Integer, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()


# ── Roster ───────────────────────────────────────────────────────────────────


class Team(Base):
    __tablename__ = "teams"

    id = Column(Text, primary_key=True)
    name = Column(Text)
    ranking_mode = Column(Text, default="automatic")
    ranking_criterion = Column(Text, default="compositeScore")
    manual_rankings = Column(Text, default="[]")  # JSON list of participant ids


class Participant(Base):
    __tablename__ = "participants"

    id = Column(Text, primary_key=True)
    team_id = Column(Text, index=True)
    name = Column(Text)
    role = Column(Text)
    position = Column(Integer)  # roster order, used for ranking ties


# ── Activity ─────────────────────────────────────────────────────────────────


class ActivityLog(Base):
    """One logged session.  Written once, never updated by the ranking engine."""

    __tablename__ = "activity_logs"

    id = Column(Text, primary_key=True)
    team_id = Column(Text, index=True)
    participant_id = Column(Text, index=True)
    duration_minutes = Column(Float)
    activity_type = Column(Text)
    intensity = Column(Integer)
    is_generated_by_ai = Column(Boolean, default=False)
    occurred_at = Column(Text)  # ISO timestamp, may be NULL
    created_at = Column(Text)   # ISO timestamp, fallback when occurred_at is missing
    raw_json = Column(Text)


# ── Rankings ─────────────────────────────────────────────────────────────────


class Ranking(Base):
    """Latest ranking per team; replaced wholesale on every run."""

    __tablename__ = "rankings"

    team_id = Column(Text, primary_key=True)
    mode = Column(Text)
    criterion = Column(Text)
    participant_ids = Column(Text)  # JSON list, rank order
    ranking_data = Column(Text)     # JSON list of score snapshots
    updated_at = Column(Text)


# ── DB helpers ───────────────────────────────────────────────────────────────


def init_db(db_path: str) -> Session:
    """Create tables and return a session."""
    engine = create_engine(f"sqlite:///{db_path}", echo=False)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)()
