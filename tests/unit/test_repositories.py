"""
Tests for the SQLAlchemy repositories on an async SQLite database.

Unique constraint violations raised by the store must come back as the
same ``DuplicateError`` messages the application pre-checks use.
"""

from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from etatcivil.db.orm import (
    ActVariant,
    Base,
    CivilAct,
    Commune,
    Person,
    Province,
    Sex,
    TerritorialEntity,
)
from etatcivil.db.repositories import (
    ActRepository,
    PersonRepository,
    duplicate_from_integrity,
)
from etatcivil.errors import ACT_NUMBER_EXISTS, SUBJECT_HAS_ACT, DuplicateError


def death_act(**overrides) -> CivilAct:
    fields = {
        "variant": ActVariant.DEATH,
        "act_number": "DEC-2024-001",
        "subject_id": 1,
        "commune_id": 1,
        "officer": "Officier Lukusa",
        "registration_date": date(2024, 3, 2),
        "death_date": date(2024, 3, 1),
        "death_place": "Hôpital",
        "cause_of_death": "Paludisme",
    }
    fields.update(overrides)
    return CivilAct(**fields)


@pytest_asyncio.fixture
async def session_factory():
    """In-memory database with two persons and one death act for person 1."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        session.add_all([
            Province(id=1, name="Kinshasa"),
            TerritorialEntity(id=1, name="Kinshasa", is_city=True, province_id=1),
            Commune(id=1, name="Gombe", entity_id=1),
            Person(id=1, surname="KABILA", patronymic="MUTOMBO", given_name="JEAN",
                   sex=Sex.MALE, birth_date=date(1950, 5, 10)),
            Person(id=2, surname="MBUYI", patronymic="KALALA", given_name="MARIE",
                   sex=Sex.FEMALE, birth_date=date(1960, 3, 15)),
        ])
        await session.flush()
        session.add(death_act())
        await session.commit()

    yield factory

    await engine.dispose()


class TestUniqueConstraintMapping:
    """Store-level violations map to the application messages."""

    @pytest.mark.asyncio
    async def test_act_number_taken(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(DuplicateError) as exc_info:
                await ActRepository(session).add(death_act(subject_id=2))

        assert exc_info.value.message == ACT_NUMBER_EXISTS
        assert exc_info.value.field == "act_number"

    @pytest.mark.asyncio
    async def test_subject_already_has_act(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(DuplicateError) as exc_info:
                await ActRepository(session).add(death_act(act_number="DEC-2024-002"))

        assert exc_info.value.message == SUBJECT_HAS_ACT
        assert exc_info.value.field == "subject_id"

    @pytest.mark.asyncio
    async def test_same_number_in_other_variant(self, session_factory):
        async with session_factory() as session:
            act = await ActRepository(session).add(
                death_act(variant=ActVariant.BIRTH, subject_id=2, death_date=None)
            )

        assert act.id is not None

    @pytest.mark.asyncio
    async def test_person_identity_taken(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(DuplicateError) as exc_info:
                await PersonRepository(session).add(
                    Person(surname="MBUYI", patronymic="KALALA", given_name="MARIE",
                           sex=Sex.FEMALE, birth_date=date(1960, 3, 15))
                )

        assert exc_info.value.message == "A person with the same identity already exists"

    def test_constraint_name_from_driver(self):
        """asyncpg reports the constraint on the cause of the adapted error."""

        class UniqueViolation(Exception):
            constraint_name = "uq_civil_acts_variant_subject"

        adapted = Exception("duplicate key value violates unique constraint")
        adapted.__cause__ = UniqueViolation()

        error = duplicate_from_integrity(IntegrityError("INSERT", {}, adapted))

        assert error.message == SUBJECT_HAS_ACT
        assert error.field == "subject_id"

    def test_unknown_constraint(self):
        error = duplicate_from_integrity(
            IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: other.column"))
        )

        assert error.message == "The record conflicts with existing data"
        assert error.field is None


class TestStatisticsFacts:
    """The flat rows behind registry statistics."""

    @pytest.mark.asyncio
    async def test_death_rows(self, session_factory):
        async with session_factory() as session:
            facts = await ActRepository(session).statistics_facts(ActVariant.DEATH)

        assert len(facts) == 1
        assert facts[0].decisive_date == date(2024, 3, 1)
        assert facts[0].birth_date == date(1950, 5, 10)
        assert facts[0].sex == Sex.MALE
        assert facts[0].commune == "Gombe"
        assert facts[0].cause_of_death == "Paludisme"

    @pytest.mark.asyncio
    async def test_birth_rows_use_subject_birth_date(self, session_factory):
        async with session_factory() as session:
            await ActRepository(session).add(
                death_act(
                    variant=ActVariant.BIRTH,
                    act_number="NAI-1960-001",
                    subject_id=2,
                    registration_date=date(1960, 3, 20),
                    death_date=None,
                    death_place=None,
                    cause_of_death=None,
                )
            )
            facts = await ActRepository(session).statistics_facts(ActVariant.BIRTH)

        assert len(facts) == 1
        assert facts[0].decisive_date == date(1960, 3, 15)
        assert facts[0].registration_date == date(1960, 3, 20)
