"""
models.py

SQLAlchemy models for users, the shared show/season/episode catalog mirror,
per-user watch records and list membership with its progress aggregate.
"""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Float, Text, UniqueConstraint, Index, Uuid
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
import uuid
from nextup.utils.timezone import utc_now

Base = declarative_base()

class User(Base):
    __tablename__ = "users"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False)
    trakt_token = Column(Text, nullable=True)  # Used by scheduled syncs when no token is supplied
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    lists = relationship("List", back_populates="user", cascade="all, delete-orphan")


class Show(Base):
    __tablename__ = "shows"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    trakt_id = Column(Integer, unique=True, nullable=False, index=True)
    slug_id = Column(String, unique=True, nullable=False)
    tvdb_id = Column(Integer, index=True)
    imdb_id = Column(String, index=True)
    tmdb_id = Column(Integer, index=True)
    last_watched_at = Column(DateTime(timezone=True))
    title = Column(String)
    year = Column(Integer)
    tagline = Column(Text)
    overview = Column(Text)
    first_aired = Column(DateTime(timezone=True))
    airs_day = Column(String)
    airs_time = Column(String)
    airs_timezone = Column(String)
    runtime = Column(Integer)
    country = Column(String)
    status = Column(String)
    rating = Column(Float)
    votes = Column(Integer)
    trailer = Column(String)
    homepage = Column(String)
    network = Column(String)
    updated_at = Column(DateTime(timezone=True))
    language = Column(String)
    genres = Column(Text)  # comma-joined
    subgenres = Column(Text)  # comma-joined
    aired_episodes = Column(Integer)
    image_fanart = Column(String)
    image_poster = Column(String)
    image_logo = Column(String)
    image_clearart = Column(String)
    image_banner = Column(String)
    image_thumb = Column(String)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    seasons = relationship("Season", back_populates="show", cascade="all, delete-orphan", order_by="Season.season_number")


class Season(Base):
    __tablename__ = "seasons"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tmdb_id = Column(Integer)
    tvdb_id = Column(Integer)
    trakt_id = Column(Integer, unique=True, nullable=False)
    show_id = Column(Uuid, ForeignKey("shows.id", ondelete="CASCADE"), nullable=False, index=True)
    season_number = Column(Integer, nullable=False)
    title = Column(String)
    episode_count = Column(Integer)
    aired_episodes = Column(Integer)
    votes = Column(Integer)
    rating = Column(Float)
    image_thumb = Column(String)
    image_poster = Column(String)
    overview = Column(Text)
    updated_at = Column(DateTime(timezone=True))
    first_aired = Column(DateTime(timezone=True))

    show = relationship("Show", back_populates="seasons")
    episodes = relationship("Episode", back_populates="season", cascade="all, delete-orphan", order_by="Episode.episode_number")

    __table_args__ = (UniqueConstraint('show_id', 'season_number', name='uq_seasons_show_number'),)


class Episode(Base):
    __tablename__ = "episodes"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    show_id = Column(Uuid, ForeignKey("shows.id", ondelete="CASCADE"), nullable=False, index=True)
    season_id = Column(Uuid, ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    trakt_id = Column(Integer, unique=True, nullable=False, index=True)
    imdb_id = Column(String)
    tmdb_id = Column(Integer)
    tvdb_id = Column(Integer)
    title = Column(String)
    votes = Column(Integer)
    image_screenshot = Column(String)
    episode_number = Column(Integer, nullable=False)
    rating = Column(Float)
    season_number = Column(Integer, nullable=False)
    runtime = Column(Integer)
    overview = Column(Text)
    updated_at = Column(DateTime(timezone=True))
    first_aired = Column(DateTime(timezone=True))
    episode_type = Column(String)

    season = relationship("Season", back_populates="episodes")

    __table_args__ = (UniqueConstraint('show_id', 'season_number', 'episode_number', name='uq_episodes_show_season_number'),)


class UserEpisode(Base):
    """Watch record: the row existing means the user has watched the episode."""
    __tablename__ = "user_episodes"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    episode_id = Column(Uuid, ForeignKey("episodes.id", ondelete="CASCADE"), nullable=False)
    watched_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (UniqueConstraint('user_id', 'episode_id', name='uq_user_episodes_user_episode'),)


class List(Base):
    __tablename__ = "lists"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    user = relationship("User", back_populates="lists")
    shows = relationship("ListShow", back_populates="list", cascade="all, delete-orphan")


class ListShow(Base):
    """Membership row carrying the denormalized progress aggregate over user_episodes."""
    __tablename__ = "list_shows"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    list_id = Column(Uuid, ForeignKey("lists.id", ondelete="CASCADE"), nullable=False)
    show_id = Column(Uuid, ForeignKey("shows.id", ondelete="CASCADE"), nullable=False)
    added_at = Column(DateTime(timezone=True), default=utc_now)
    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    watched_episodes = Column(Integer, default=0, nullable=False)
    total_episodes = Column(Integer, default=0, nullable=False)
    next_episode_id = Column(Uuid, ForeignKey("episodes.id", ondelete="SET NULL"), nullable=True)

    list = relationship("List", back_populates="shows")
    show = relationship("Show")
    next_episode = relationship("Episode")

    __table_args__ = (
        UniqueConstraint('list_id', 'show_id', name='uq_list_shows_list_show'),
        Index('ix_list_shows_show_id', 'show_id'),
        Index('ix_list_shows_next_episode_id', 'next_episode_id'),
    )
