"""
SQLAlchemy ORM models for persistent storage.

Models mirror the checklist dataclasses but add database persistence.
Sport is stored as "" when unknown so the four-column unique key also
guards sport-less sets (NULLs never collide in a unique index).
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class SetChecklistDB(Base):
    """
    A set checklist stored in the database.

    One row per (manufacturer, brand, year, sport) print run.
    """

    __tablename__ = "set_checklists"
    __table_args__ = (
        UniqueConstraint("manufacturer", "brand", "year", "sport", name="uq_checklist_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    manufacturer: Mapped[str] = mapped_column(String(100), index=True)
    brand: Mapped[str] = mapped_column(String(100), index=True)
    year: Mapped[int] = mapped_column(Integer, index=True)
    sport: Mapped[str] = mapped_column(String(50), default="")

    total_base_cards: Mapped[int] = mapped_column(Integer, default=0)
    # Raw variation names in the order they were learned
    known_variations: Mapped[list[str]] = mapped_column(JSON, default=list)
    data_source: Mapped[str] = mapped_column(String(20), default="seed")

    cached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_enriched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    cards: Mapped[list["ChecklistCardDB"]] = relationship(
        back_populates="checklist",
        cascade="all, delete-orphan",
        order_by="ChecklistCardDB.id",
    )

    def __repr__(self) -> str:
        return (
            f"<SetChecklistDB(id={self.id}, {self.year} {self.manufacturer} {self.brand}, "
            f"source={self.data_source})>"
        )


class ChecklistCardDB(Base):
    """A single card entry of a set checklist."""

    __tablename__ = "checklist_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    checklist_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("set_checklists.id", ondelete="CASCADE"), index=True
    )
    card_number: Mapped[str] = mapped_column(String(50))
    player_name: Mapped[str] = mapped_column(String(255))
    team: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_rookie: Mapped[bool] = mapped_column(Boolean, default=False)
    subset: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str] = mapped_column(String(20), default="seed")

    checklist: Mapped["SetChecklistDB"] = relationship(back_populates="cards")

    def __repr__(self) -> str:
        return f"<ChecklistCardDB(#{self.card_number} {self.player_name})>"


class MissingChecklistDB(Base):
    """
    A set the verifier looked up and could not find.

    Deleted as soon as a checklist for the same key exists.
    """

    __tablename__ = "missing_checklists"
    __table_args__ = (
        UniqueConstraint("manufacturer", "brand", "year", "sport", name="uq_missing_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    manufacturer: Mapped[str] = mapped_column(String(100))
    brand: Mapped[str] = mapped_column(String(100))
    year: Mapped[int] = mapped_column(Integer)
    sport: Mapped[str] = mapped_column(String(50), default="")
    hit_count: Mapped[int] = mapped_column(Integer, default=1)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return (
            f"<MissingChecklistDB({self.year} {self.manufacturer} {self.brand}, "
            f"hits={self.hit_count})>"
        )


class SavedCardDB(Base):
    """An accepted card. Only the fields the checklist corpus cares about get columns."""

    __tablename__ = "saved_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    player_name: Mapped[str] = mapped_column(String(255))
    card_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    manufacturer: Mapped[str | None] = mapped_column(String(100), nullable=True)
    brand: Mapped[str | None] = mapped_column(String(100), nullable=True)
    parallel_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Full card as accepted by the user
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<SavedCardDB(id={self.id}, player={self.player_name})>"
