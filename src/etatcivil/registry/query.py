"""
Multi-criteria query composition.

Each optional criterion contributes one predicate; an absent criterion
contributes ``true()`` so that leaving every filter unset is the same as
listing everything. Predicates are AND-ed into a single statement, then
sorted on a whitelisted column (always followed by the primary key so
paging is deterministic) and sliced into a page.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Optional

from sqlalchemy import Select, and_, func, select, true
from sqlalchemy.sql.elements import ColumnElement

from etatcivil.db.orm import (
    ActVariant,
    CivilAct,
    Commune,
    MaritalStatus,
    Person,
    Sex,
    TerritorialEntity,
    VitalStatus,
)
from etatcivil.errors import InvalidQueryError
from etatcivil.registry.rules import add_years, has_text, normalize_act_number


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class PageRequest:
    """Requested page, size and ordering. Checked by the composer."""

    page: int = 0
    size: int = 20
    sort_by: Optional[str] = None
    direction: Optional[SortDirection] = None

    @property
    def offset(self) -> int:
        return self.page * self.size


@dataclass
class ActSearchCriteria:
    """Optional filters on acts. ``None`` means "do not filter"."""

    act_number: Optional[str] = None
    surname: Optional[str] = None
    patronymic: Optional[str] = None
    given_name: Optional[str] = None
    sex: Optional[Sex] = None
    officer: Optional[str] = None
    death_place: Optional[str] = None
    commune_id: Optional[int] = None
    entity_id: Optional[int] = None
    province_id: Optional[int] = None
    decisive_date_from: Optional[date] = None
    decisive_date_to: Optional[date] = None
    registration_date_from: Optional[date] = None
    registration_date_to: Optional[date] = None


@dataclass
class PersonSearchCriteria:
    """Optional filters on persons. Ages are converted to birth-date bounds."""

    surname: Optional[str] = None
    patronymic: Optional[str] = None
    given_name: Optional[str] = None
    birthplace: Optional[str] = None
    sex: Optional[Sex] = None
    vital_status: Optional[VitalStatus] = None
    marital_status: Optional[MaritalStatus] = None
    father_id: Optional[int] = None
    mother_id: Optional[int] = None
    birth_date_from: Optional[date] = None
    birth_date_to: Optional[date] = None
    age_min: Optional[int] = None
    age_max: Optional[int] = None


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


LIKE_ESCAPE = "\\"


def escape_like(fragment: str) -> str:
    """Make ``%`` and ``_`` in user input match themselves."""
    return (
        fragment.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def contains(column: Any, fragment: Optional[str]) -> ColumnElement[bool]:
    """Case-insensitive substring match, or ``true()`` when no fragment."""
    if not has_text(fragment):
        return true()
    return column.ilike(f"%{escape_like(fragment.strip())}%", escape=LIKE_ESCAPE)


def equals(column: Any, value: Any) -> ColumnElement[bool]:
    if value is None:
        return true()
    return column == value


def within(
    column: Any,
    lower: Optional[date],
    upper: Optional[date],
) -> ColumnElement[bool]:
    """Inclusive range; each missing bound is open."""
    return and_(
        true() if lower is None else column >= lower,
        true() if upper is None else column <= upper,
    )


def birth_date_bounds(
    criteria: PersonSearchCriteria,
    today: date,
) -> tuple[Optional[date], Optional[date]]:
    """
    Combine explicit birth-date bounds with the age range.

    ``age_max`` gives the earliest birth date (today minus age_max years) and
    ``age_min`` the latest (today minus age_min years). When both an explicit
    bound and an age-derived bound exist, the tighter one wins.
    """
    earliest = criteria.birth_date_from
    latest = criteria.birth_date_to

    if criteria.age_max is not None:
        bound = add_years(today, -criteria.age_max)
        earliest = bound if earliest is None else max(earliest, bound)

    if criteria.age_min is not None:
        bound = add_years(today, -criteria.age_min)
        latest = bound if latest is None else min(latest, bound)

    return earliest, latest


def decisive_date_column(variant: ActVariant) -> Any:
    """Death date for death acts, subject birth date for birth acts."""
    if variant == ActVariant.DEATH:
        return CivilAct.death_date
    return Person.birth_date


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------


class QueryComposer:
    """
    Builds filtered, sorted, paged SELECT statements.

    The composer only builds statements; repositories execute them. It
    rejects malformed paging and unknown sort fields with
    ``InvalidQueryError`` instead of silently returning everything.
    """

    PERSON_SORT_FIELDS = {
        "id": Person.id,
        "surname": Person.surname,
        "patronymic": Person.patronymic,
        "given_name": Person.given_name,
        "birth_date": Person.birth_date,
        "created_at": Person.created_at,
    }

    def __init__(self, max_page_size: int = 100):
        self.max_page_size = max_page_size

    def check_page(self, page: PageRequest) -> None:
        if page.page < 0:
            raise InvalidQueryError("Page number must be >= 0", field="page")
        if page.size < 1 or page.size > self.max_page_size:
            raise InvalidQueryError(
                f"Page size must be between 1 and {self.max_page_size}",
                field="size",
            )

    # -- acts ---------------------------------------------------------------

    def act_sort_fields(self, variant: ActVariant) -> dict[str, Any]:
        return {
            "id": CivilAct.id,
            "act_number": CivilAct.act_number,
            "registration_date": CivilAct.registration_date,
            "decisive_date": decisive_date_column(variant),
            "officer": CivilAct.officer,
            "surname": Person.surname,
            "commune": Commune.name,
        }

    def act_filter(
        self,
        variant: ActVariant,
        criteria: ActSearchCriteria,
    ) -> ColumnElement[bool]:
        """AND of every criterion's predicate, scoped to one variant."""
        act_number = (
            normalize_act_number(criteria.act_number)
            if has_text(criteria.act_number)
            else None
        )
        return and_(
            CivilAct.variant == variant,
            contains(CivilAct.act_number, act_number),
            contains(Person.surname, criteria.surname),
            contains(Person.patronymic, criteria.patronymic),
            contains(Person.given_name, criteria.given_name),
            equals(Person.sex, criteria.sex),
            contains(CivilAct.officer, criteria.officer),
            contains(CivilAct.death_place, criteria.death_place),
            equals(CivilAct.commune_id, criteria.commune_id),
            equals(Commune.entity_id, criteria.entity_id),
            equals(TerritorialEntity.province_id, criteria.province_id),
            within(
                decisive_date_column(variant),
                criteria.decisive_date_from,
                criteria.decisive_date_to,
            ),
            within(
                CivilAct.registration_date,
                criteria.registration_date_from,
                criteria.registration_date_to,
            ),
        )

    def act_base(self, variant: ActVariant, criteria: ActSearchCriteria) -> Select:
        return (
            select(CivilAct)
            .join(Person, CivilAct.subject_id == Person.id)
            .join(Commune, CivilAct.commune_id == Commune.id)
            .join(TerritorialEntity, Commune.entity_id == TerritorialEntity.id)
            .where(self.act_filter(variant, criteria))
        )

    def acts(
        self,
        variant: ActVariant,
        criteria: ActSearchCriteria,
        page: PageRequest,
    ) -> tuple[Select, Select]:
        """
        Build the page and count statements for an act search.

        Default order: most recent registration first.

        Returns:
            Tuple of (page statement, count statement)
        """
        self.check_page(page)
        base = self.act_base(variant, criteria)
        order = self._order(
            self.act_sort_fields(variant),
            page,
            default_field="registration_date",
            default_direction=SortDirection.DESC,
            tiebreaker=CivilAct.id,
        )
        return (
            base.order_by(*order).offset(page.offset).limit(page.size),
            self._count(base),
        )

    # -- persons ------------------------------------------------------------

    def person_filter(
        self,
        criteria: PersonSearchCriteria,
        today: Optional[date] = None,
    ) -> ColumnElement[bool]:
        if criteria.age_min is not None and criteria.age_min < 0:
            raise InvalidQueryError("Minimum age must be >= 0", field="age_min")
        if criteria.age_max is not None and criteria.age_max < 0:
            raise InvalidQueryError("Maximum age must be >= 0", field="age_max")

        earliest, latest = birth_date_bounds(criteria, today or date.today())
        return and_(
            contains(Person.surname, criteria.surname),
            contains(Person.patronymic, criteria.patronymic),
            contains(Person.given_name, criteria.given_name),
            contains(Person.birthplace, criteria.birthplace),
            equals(Person.sex, criteria.sex),
            equals(Person.vital_status, criteria.vital_status),
            equals(Person.marital_status, criteria.marital_status),
            equals(Person.father_id, criteria.father_id),
            equals(Person.mother_id, criteria.mother_id),
            within(Person.birth_date, earliest, latest),
        )

    def persons(
        self,
        criteria: PersonSearchCriteria,
        page: PageRequest,
        today: Optional[date] = None,
    ) -> tuple[Select, Select]:
        """
        Build the page and count statements for a person search.

        Default order: surname ascending.
        """
        self.check_page(page)
        base = select(Person).where(self.person_filter(criteria, today))
        order = self._order(
            self.PERSON_SORT_FIELDS,
            page,
            default_field="surname",
            default_direction=SortDirection.ASC,
            tiebreaker=Person.id,
        )
        return (
            base.order_by(*order).offset(page.offset).limit(page.size),
            self._count(base),
        )

    # -- helpers ------------------------------------------------------------

    def _order(
        self,
        fields: dict[str, Any],
        page: PageRequest,
        default_field: str,
        default_direction: SortDirection,
        tiebreaker: Any,
    ) -> list[Any]:
        sort_by = page.sort_by or default_field
        if sort_by not in fields:
            allowed = ", ".join(sorted(fields))
            raise InvalidQueryError(
                f"Unknown sort field '{sort_by}' (allowed: {allowed})",
                field="sort_by",
            )

        direction = page.direction or default_direction
        column = fields[sort_by]
        primary = column.desc() if direction == SortDirection.DESC else column.asc()
        if column is tiebreaker:
            return [primary]
        return [primary, tiebreaker.asc()]

    @staticmethod
    def _count(base: Select) -> Select:
        return select(func.count()).select_from(base.order_by(None).subquery())
