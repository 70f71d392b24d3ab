"""
SQLAlchemy database models for the civil registry.

Implements:
- Territorial hierarchy (province > territorial entity > commune), read-only
  from the engine's point of view
- Persons with vital/marital status and weak parent references
- Civil acts (birth and death certificates) in a single table keyed by variant

Integrity:
- (variant, act_number) is unique: one act per number per variant
- (variant, subject_id) is unique: one act per person per variant
"""

import enum
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Sex(str, enum.Enum):
    """Sex recorded on a person."""

    MALE = "male"
    FEMALE = "female"


class VitalStatus(str, enum.Enum):
    """Vital status of a person, driven by death act lifecycle."""

    ALIVE = "alive"
    DECEASED = "deceased"
    UNKNOWN = "unknown"


class MaritalStatus(str, enum.Enum):
    """Marital status of a person."""

    SINGLE = "single"
    MARRIED = "married"
    WIDOWED = "widowed"
    DIVORCED = "divorced"
    SEPARATED = "separated"


class ActVariant(str, enum.Enum):
    """Kinds of civil act handled by the registry."""

    BIRTH = "birth"
    DEATH = "death"


class Province(Base):
    """Top level of the territorial hierarchy."""

    __tablename__ = "provinces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    entities: Mapped[list["TerritorialEntity"]] = relationship(
        "TerritorialEntity", back_populates="province"
    )


class TerritorialEntity(Base):
    """City or territory inside a province."""

    __tablename__ = "territorial_entities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_city: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    province_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("provinces.id"), nullable=False
    )

    province: Mapped["Province"] = relationship("Province", back_populates="entities")
    communes: Mapped[list["Commune"]] = relationship("Commune", back_populates="entity")

    __table_args__ = (Index("idx_entities_province", "province_id"),)


class Commune(Base):
    """Commune where acts are registered."""

    __tablename__ = "communes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("territorial_entities.id"), nullable=False
    )

    entity: Mapped["TerritorialEntity"] = relationship(
        "TerritorialEntity", back_populates="communes"
    )

    __table_args__ = (Index("idx_communes_entity", "entity_id"),)


class Person(Base):
    """
    Identity and vital record of a person.

    ``vital_status`` is only written by the lifecycle manager. Parent links
    are plain nullable foreign keys: no ownership, no cascade.
    """

    __tablename__ = "persons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity
    surname: Mapped[str] = mapped_column(String(50), nullable=False)
    patronymic: Mapped[str] = mapped_column(String(50), nullable=False)
    given_name: Mapped[Optional[str]] = mapped_column(String(50))
    sex: Mapped[Sex] = mapped_column(SQLEnum(Sex), nullable=False)

    # Birth
    birth_date: Mapped[Optional[date]] = mapped_column(Date)
    birth_time: Mapped[Optional[time]] = mapped_column(Time)
    birthplace: Mapped[Optional[str]] = mapped_column(String(100))

    # Civil details
    profession: Mapped[Optional[str]] = mapped_column(String(100))
    nationality: Mapped[Optional[str]] = mapped_column(String(50))
    address: Mapped[Optional[str]] = mapped_column(String(200))
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    email: Mapped[Optional[str]] = mapped_column(String(50))

    # Parents
    father_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("persons.id"))
    mother_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("persons.id"))

    # Status
    vital_status: Mapped[VitalStatus] = mapped_column(
        SQLEnum(VitalStatus), default=VitalStatus.ALIVE, nullable=False
    )
    marital_status: Mapped[MaritalStatus] = mapped_column(
        SQLEnum(MaritalStatus), default=MaritalStatus.SINGLE, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    father: Mapped[Optional["Person"]] = relationship(
        "Person", remote_side=[id], foreign_keys=[father_id]
    )
    mother: Mapped[Optional["Person"]] = relationship(
        "Person", remote_side=[id], foreign_keys=[mother_id]
    )

    __table_args__ = (
        UniqueConstraint(
            "surname", "patronymic", "given_name", "birth_date",
            name="uq_persons_identity",
        ),
        Index("idx_persons_surname", "surname"),
        Index("idx_persons_birth_date", "birth_date"),
    )

    @property
    def full_name(self) -> str:
        """Surname, patronymic and given name joined by spaces."""
        parts = [self.surname, self.patronymic, self.given_name]
        return " ".join(p for p in parts if p).strip()


class CivilAct(Base):
    """
    Birth or death certificate.

    Both variants share the registration columns; the death columns stay
    NULL on birth acts. The decisive date of a birth act is the subject's
    birth date.
    """

    __tablename__ = "civil_acts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    variant: Mapped[ActVariant] = mapped_column(SQLEnum(ActVariant), nullable=False)
    act_number: Mapped[str] = mapped_column(String(30), nullable=False)

    subject_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("persons.id"), nullable=False
    )
    commune_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("communes.id"), nullable=False
    )

    # Registration
    officer: Mapped[str] = mapped_column(String(100), nullable=False)
    registration_date: Mapped[date] = mapped_column(Date, nullable=False)
    declarant: Mapped[Optional[str]] = mapped_column(String(100))
    witness1: Mapped[Optional[str]] = mapped_column(String(100))
    witness2: Mapped[Optional[str]] = mapped_column(String(100))
    observations: Mapped[Optional[str]] = mapped_column(String(500))

    # Death only
    death_date: Mapped[Optional[date]] = mapped_column(Date)
    death_time: Mapped[Optional[time]] = mapped_column(Time)
    death_place: Mapped[Optional[str]] = mapped_column(String(150))
    cause_of_death: Mapped[Optional[str]] = mapped_column(String(200))
    physician: Mapped[Optional[str]] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    subject: Mapped["Person"] = relationship("Person")
    commune: Mapped["Commune"] = relationship("Commune")

    __table_args__ = (
        UniqueConstraint("variant", "act_number", name="uq_civil_acts_variant_number"),
        UniqueConstraint("variant", "subject_id", name="uq_civil_acts_variant_subject"),
        Index("idx_civil_acts_commune", "commune_id"),
        Index("idx_civil_acts_registration", "variant", "registration_date"),
    )

    @property
    def decisive_date(self) -> Optional[date]:
        """Death date for death acts, subject birth date for birth acts."""
        if self.variant == ActVariant.DEATH:
            return self.death_date
        return self.subject.birth_date if self.subject else None
