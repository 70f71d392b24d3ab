"""
Database repositories for data access layer.

Provides async operations for persons, civil acts and the read-only
territorial hierarchy. Search statements come from the query composer;
repositories only execute them.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint, exists, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction
from sqlalchemy.orm import selectinload

from etatcivil.db.orm import (
    ActVariant,
    Base,
    CivilAct,
    Commune,
    Person,
    TerritorialEntity,
)
from etatcivil.errors import (
    ACT_NUMBER_EXISTS,
    SUBJECT_HAS_ACT,
    DuplicateError,
    UnexpectedError,
)
from etatcivil.registry.query import (
    ActSearchCriteria,
    PageRequest,
    PersonSearchCriteria,
    QueryComposer,
    decisive_date_column,
)
from etatcivil.registry.schemas import Page
from etatcivil.registry.statistics import ActFacts

logger = logging.getLogger(__name__)


# Unique constraints the engine knows how to report, by constraint name
UNIQUE_VIOLATIONS = {
    "uq_civil_acts_variant_number": (ACT_NUMBER_EXISTS, "act_number"),
    "uq_civil_acts_variant_subject": (SUBJECT_HAS_ACT, "subject_id"),
    "uq_persons_identity": ("A person with the same identity already exists", None),
}


def _known_unique_constraints() -> list[UniqueConstraint]:
    return [
        constraint
        for table in Base.metadata.tables.values()
        for constraint in table.constraints
        if isinstance(constraint, UniqueConstraint)
        and constraint.name in UNIQUE_VIOLATIONS
    ]


def violated_constraint(exc: IntegrityError) -> Optional[str]:
    """
    Name of the unique constraint behind an integrity error, if known.

    PostgreSQL drivers expose the name on the DBAPI error (asyncpg on the
    adapted error's cause). SQLite only lists the columns, as
    ``table.column, table.column`` in constraint order.
    """
    for source in (exc.orig, getattr(exc.orig, "__cause__", None)):
        name = getattr(source, "constraint_name", None)
        if name:
            return name

    detail = str(exc.orig)
    for constraint in _known_unique_constraints():
        columns = ", ".join(
            f"{constraint.table.name}.{column.name}" for column in constraint.columns
        )
        if constraint.name in detail or columns in detail:
            return constraint.name
    return None


def duplicate_from_integrity(exc: IntegrityError) -> DuplicateError:
    """Map a unique-constraint violation back to the application error."""
    violation = UNIQUE_VIOLATIONS.get(violated_constraint(exc))
    if violation is None:
        return DuplicateError("The record conflicts with existing data")
    message, field = violation
    return DuplicateError(message, field=field)


class _Repository:
    """Session holder with savepoint support."""

    def __init__(self, session: AsyncSession, composer: Optional[QueryComposer] = None):
        self.session = session
        self.composer = composer or QueryComposer()

    def savepoint(self) -> AsyncSessionTransaction:
        """
        Open a nested transaction.

        Used as ``async with repo.savepoint():`` to isolate a unit of work
        that may fail without poisoning the enclosing transaction.
        """
        return self.session.begin_nested()

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise duplicate_from_integrity(e) from e
        except SQLAlchemyError as e:
            logger.error(f"Store write failed: {e}")
            raise UnexpectedError("The record store rejected the write") from e


class PersonRepository(_Repository):
    """Repository for Person operations."""

    async def get_by_id(self, person_id: int) -> Optional[Person]:
        """Get person by ID, with parents loaded."""
        result = await self.session.execute(
            select(Person)
            .where(Person.id == person_id)
            .options(selectinload(Person.father), selectinload(Person.mother))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_ids(self, person_ids: list[int]) -> list[Person]:
        """Get multiple persons by IDs."""
        if not person_ids:
            return []
        result = await self.session.execute(
            select(Person).where(Person.id.in_(person_ids))
        )
        return list(result.scalars().all())

    async def find_by_identity(
        self,
        surname: str,
        patronymic: str,
        given_name: Optional[str],
        birth_date,
    ) -> Optional[Person]:
        """Find a person with the same names and birth date."""
        stmt = select(Person).where(
            Person.surname == surname,
            Person.patronymic == patronymic,
            Person.birth_date == birth_date,
        )
        if given_name is None:
            stmt = stmt.where(Person.given_name.is_(None))
        else:
            stmt = stmt.where(Person.given_name == given_name)
        result = await self.session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def is_parent(self, person_id: int) -> bool:
        """True when anyone records this person as father or mother."""
        result = await self.session.execute(
            select(
                exists().where(
                    (Person.father_id == person_id) | (Person.mother_id == person_id)
                )
            )
        )
        return bool(result.scalar())

    async def add(self, person: Person) -> Person:
        """Insert a new person."""
        self.session.add(person)
        await self._flush()
        return person

    async def save(self, person: Person) -> Person:
        """Write back a modified person."""
        person.updated_at = datetime.utcnow()
        await self._flush()
        return person

    async def delete(self, person: Person) -> None:
        """Delete a person. Rejected by the store while an act references it."""
        await self.session.delete(person)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateError(
                "The person is referenced by a civil act and cannot be deleted"
            ) from e

    async def search(
        self,
        criteria: PersonSearchCriteria,
        page: PageRequest,
    ) -> Page[Person]:
        """Filtered, sorted, paged person search."""
        page_stmt, count_stmt = self.composer.persons(criteria, page)
        total = (await self.session.execute(count_stmt)).scalar_one()
        result = await self.session.execute(page_stmt)
        return Page[Person].build(list(result.scalars().all()), total, page.page, page.size)


class ActRepository(_Repository):
    """Repository for civil acts of both variants."""

    @staticmethod
    def _resolved():
        """Loader options for a fully resolved act."""
        subject = selectinload(CivilAct.subject)
        return (
            subject.selectinload(Person.father),
            subject.selectinload(Person.mother),
            selectinload(CivilAct.commune)
            .selectinload(Commune.entity)
            .selectinload(TerritorialEntity.province),
        )

    async def _one(self, *criteria) -> Optional[CivilAct]:
        result = await self.session.execute(
            select(CivilAct)
            .where(*criteria)
            .options(*self._resolved())
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, variant: ActVariant, act_id: int) -> Optional[CivilAct]:
        """Get act by ID, with subject and territory resolved."""
        return await self._one(CivilAct.variant == variant, CivilAct.id == act_id)

    async def get_by_number(
        self, variant: ActVariant, act_number: str
    ) -> Optional[CivilAct]:
        """Get act by its (already normalized) number."""
        return await self._one(
            CivilAct.variant == variant, CivilAct.act_number == act_number
        )

    async def get_by_subject(
        self, variant: ActVariant, subject_id: int
    ) -> Optional[CivilAct]:
        """Get the act of a given person, if any."""
        return await self._one(
            CivilAct.variant == variant, CivilAct.subject_id == subject_id
        )

    async def number_exists(
        self,
        variant: ActVariant,
        act_number: str,
        exclude_id: Optional[int] = None,
    ) -> bool:
        """Check whether an act number is taken, optionally ignoring one act."""
        clause = exists().where(
            CivilAct.variant == variant, CivilAct.act_number == act_number
        )
        if exclude_id is not None:
            clause = clause.where(CivilAct.id != exclude_id)
        result = await self.session.execute(select(clause))
        return bool(result.scalar())

    async def subject_has_act(self, variant: ActVariant, subject_id: int) -> bool:
        result = await self.session.execute(
            select(
                exists().where(
                    CivilAct.variant == variant, CivilAct.subject_id == subject_id
                )
            )
        )
        return bool(result.scalar())

    async def add(self, act: CivilAct) -> CivilAct:
        """
        Insert a new act.

        The unique constraints on (variant, act_number) and
        (variant, subject_id) are the final arbiter; a violation is reported
        as ``DuplicateError`` with the same message as the pre-check.
        """
        self.session.add(act)
        await self._flush()
        return act

    async def save(self, act: CivilAct) -> CivilAct:
        """Write back a modified act."""
        act.updated_at = datetime.utcnow()
        await self._flush()
        return act

    async def delete(self, act: CivilAct) -> None:
        await self.session.delete(act)
        await self.session.flush()

    async def search(
        self,
        variant: ActVariant,
        criteria: ActSearchCriteria,
        page: PageRequest,
    ) -> Page[CivilAct]:
        """Filtered, sorted, paged act search."""
        page_stmt, count_stmt = self.composer.acts(variant, criteria, page)
        total = (await self.session.execute(count_stmt)).scalar_one()
        result = await self.session.execute(page_stmt.options(*self._resolved()))
        return Page[CivilAct].build(
            list(result.scalars().all()), total, page.page, page.size
        )

    async def count(
        self,
        variant: ActVariant,
        commune_id: Optional[int] = None,
        entity_id: Optional[int] = None,
        province_id: Optional[int] = None,
    ) -> int:
        """Count acts of a variant in a commune, territorial entity or province."""
        stmt = (
            select(func.count(CivilAct.id))
            .join(Commune, CivilAct.commune_id == Commune.id)
            .join(TerritorialEntity, Commune.entity_id == TerritorialEntity.id)
            .where(CivilAct.variant == variant)
        )
        if commune_id is not None:
            stmt = stmt.where(CivilAct.commune_id == commune_id)
        if entity_id is not None:
            stmt = stmt.where(Commune.entity_id == entity_id)
        if province_id is not None:
            stmt = stmt.where(TerritorialEntity.province_id == province_id)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def statistics_facts(self, variant: ActVariant) -> list[ActFacts]:
        """One flat row per act of a variant, for registry statistics."""
        stmt = (
            select(
                CivilAct.registration_date,
                decisive_date_column(variant).label("decisive_date"),
                Person.birth_date,
                Person.sex,
                Commune.name,
                CivilAct.officer,
                CivilAct.cause_of_death,
                CivilAct.physician,
            )
            .join(Person, CivilAct.subject_id == Person.id)
            .join(Commune, CivilAct.commune_id == Commune.id)
            .where(CivilAct.variant == variant)
        )
        result = await self.session.execute(stmt)
        return [ActFacts(*row) for row in result.all()]


class TerritoryRepository(_Repository):
    """Read-only lookups on the territorial hierarchy."""

    async def get_commune(self, commune_id: int) -> Optional[Commune]:
        """Get commune with its territorial entity and province."""
        result = await self.session.execute(
            select(Commune)
            .where(Commune.id == commune_id)
            .options(
                selectinload(Commune.entity).selectinload(TerritorialEntity.province)
            )
        )
        return result.scalar_one_or_none()

    async def commune_exists(self, commune_id: int) -> bool:
        result = await self.session.execute(
            select(exists().where(Commune.id == commune_id))
        )
        return bool(result.scalar())
