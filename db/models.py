"""
SQLAlchemy ORM models for the song fame engine.

``Song`` is the only row the engine mutates. The consumption tables are
written by the release, streaming and radio pipelines and only read here.
``Band.favourite_version`` is the compare-and-swap token that makes
fan-favourite slot allocation atomic per band.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Band(Base):
    """A roster that owns songs and up to three fan-favourite slots.

    Solo artists get a row too, keyed ``solo:<artist_id>``, so their slot
    changes share the same version check.

    ``favourite_version`` is bumped by every committed slot change; a
    writer that read an older version loses the race and retries.
    """

    __tablename__ = "bands"

    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), default="")
    favourite_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    songs: Mapped[list["Song"]] = relationship(back_populates="band")


class Song(Base):
    """Persisted song state."""

    __tablename__ = "songs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    band_id: Mapped[str | None] = mapped_column(
        ForeignKey("bands.id", ondelete="SET NULL"),
        index=True,
        nullable=True,
    )
    artist_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    title: Mapped[str] = mapped_column(String(256), default="")
    fame: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    popularity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    gig_play_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_gigged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_fan_favourite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fan_favourite_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    quality_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    band: Mapped["Band | None"] = relationship(back_populates="songs")

    __table_args__ = (
        CheckConstraint("popularity >= 0 AND popularity <= 1000", name="ck_song_popularity_range"),
        Index("idx_song_band_favourite", "band_id", "is_fan_favourite"),
    )


class StreamingStat(Base):
    """Streams of a song in one country."""

    __tablename__ = "streaming_stats"

    id: Mapped[int] = mapped_column(primary_key=True)
    song_id: Mapped[str] = mapped_column(ForeignKey("songs.id", ondelete="CASCADE"), index=True)
    country_code: Mapped[str] = mapped_column(String(8))
    streams: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (UniqueConstraint("song_id", "country_code", name="uq_stream_song_country"),)


class ReleaseSale(Base):
    """Units of a song sold in one country (one row per sales batch)."""

    __tablename__ = "release_sales"

    id: Mapped[int] = mapped_column(primary_key=True)
    song_id: Mapped[str] = mapped_column(ForeignKey("songs.id", ondelete="CASCADE"), index=True)
    country_code: Mapped[str | None] = mapped_column(String(8), nullable=True)
    units: Mapped[int] = mapped_column(Integer, default=0)


class RadioPlay(Base):
    """One radio play of a song."""

    __tablename__ = "radio_plays"

    id: Mapped[int] = mapped_column(primary_key=True)
    song_id: Mapped[str] = mapped_column(ForeignKey("songs.id", ondelete="CASCADE"), index=True)
    station: Mapped[str] = mapped_column(String(128), default="")
    played_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SongHype(Base):
    """Accumulated hype of a song."""

    __tablename__ = "song_hype"

    song_id: Mapped[str] = mapped_column(
        ForeignKey("songs.id", ondelete="CASCADE"), primary_key=True
    )
    hype: Mapped[float] = mapped_column(Float, default=0.0)


class GigSongPlay(Base):
    """One live performance of a song, kept for the overplay window."""

    __tablename__ = "gig_song_plays"

    id: Mapped[int] = mapped_column(primary_key=True)
    song_id: Mapped[str] = mapped_column(ForeignKey("songs.id", ondelete="CASCADE"), index=True)
    band_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    performed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
