"""
Pydantic models for the registry engine.

These models are used for API requests/responses and as the engine's own
input/output types, separate from the SQLAlchemy database models.
"""

from datetime import date, time
from enum import Enum
from math import ceil
from typing import Annotated, Any, Callable, Generic, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

from etatcivil.db.orm import (
    ActVariant,
    CivilAct,
    MaritalStatus,
    Person,
    Sex,
    VitalStatus,
)
from etatcivil.registry.rules import age_in_years

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Act requests
# ---------------------------------------------------------------------------


class ActCreate(BaseModel):
    """Fields needed to register one act of either variant."""

    act_number: str = Field(..., min_length=1, max_length=30)
    subject_id: int = Field(..., gt=0, description="Newborn or deceased person ID")
    commune_id: int = Field(..., gt=0)
    officer: str = Field(..., min_length=1, max_length=100)
    registration_date: date = Field(default_factory=date.today)
    declarant: Optional[str] = Field(None, max_length=100)
    witness1: Optional[str] = Field(None, max_length=100)
    witness2: Optional[str] = Field(None, max_length=100)
    observations: Optional[str] = Field(None, max_length=500)

    # Death acts only
    death_date: Optional[date] = None
    death_time: Optional[time] = None
    death_place: Optional[str] = Field(None, max_length=150)
    cause_of_death: Optional[str] = Field(None, max_length=200)
    physician: Optional[str] = Field(None, max_length=100)


class ActUpdate(BaseModel):
    """
    Partial update of an act.

    Only fields present in the request are applied; the subject of an act
    cannot be changed.
    """

    act_number: Optional[str] = Field(None, min_length=1, max_length=30)
    commune_id: Optional[int] = Field(None, gt=0)
    officer: Optional[str] = Field(None, min_length=1, max_length=100)
    registration_date: Optional[date] = None
    declarant: Optional[str] = Field(None, max_length=100)
    witness1: Optional[str] = Field(None, max_length=100)
    witness2: Optional[str] = Field(None, max_length=100)
    observations: Optional[str] = Field(None, max_length=500)
    death_date: Optional[date] = None
    death_time: Optional[time] = None
    death_place: Optional[str] = Field(None, max_length=150)
    cause_of_death: Optional[str] = Field(None, max_length=200)
    physician: Optional[str] = Field(None, max_length=100)


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


class ProvinceInfo(BaseModel):
    id: int
    name: str


class EntityInfo(BaseModel):
    id: int
    name: str
    is_city: bool


class CommuneInfo(BaseModel):
    id: int
    name: str


class ParentInfo(BaseModel):
    """Short view of a parent."""

    id: int
    surname: str
    patronymic: str
    given_name: Optional[str] = None
    profession: Optional[str] = None
    nationality: Optional[str] = None

    @classmethod
    def from_person(cls, person: Person) -> "ParentInfo":
        return cls(
            id=person.id,
            surname=person.surname,
            patronymic=person.patronymic,
            given_name=person.given_name,
            profession=person.profession,
            nationality=person.nationality,
        )


class SubjectInfo(BaseModel):
    """The person an act refers to, with parents resolved."""

    id: int
    surname: str
    patronymic: str
    given_name: Optional[str] = None
    sex: Sex
    birth_date: Optional[date] = None
    birthplace: Optional[str] = None
    profession: Optional[str] = None
    nationality: Optional[str] = None
    vital_status: VitalStatus
    father: Optional[ParentInfo] = None
    mother: Optional[ParentInfo] = None

    @classmethod
    def from_person(cls, person: Person) -> "SubjectInfo":
        return cls(
            id=person.id,
            surname=person.surname,
            patronymic=person.patronymic,
            given_name=person.given_name,
            sex=person.sex,
            birth_date=person.birth_date,
            birthplace=person.birthplace,
            profession=person.profession,
            nationality=person.nationality,
            vital_status=person.vital_status,
            father=ParentInfo.from_person(person.father) if person.father else None,
            mother=ParentInfo.from_person(person.mother) if person.mother else None,
        )


class ActResponse(BaseModel):
    """
    Fully resolved act.

    Carries subject, commune, territorial entity and province names so that
    callers (including a certificate renderer) never need a second lookup.
    """

    id: int
    variant: ActVariant
    act_number: str
    registration_date: date
    officer: str
    declarant: Optional[str] = None
    witness1: Optional[str] = None
    witness2: Optional[str] = None
    observations: Optional[str] = None
    decisive_date: Optional[date] = None
    death_date: Optional[date] = None
    death_time: Optional[time] = None
    death_place: Optional[str] = None
    cause_of_death: Optional[str] = None
    physician: Optional[str] = None

    subject: SubjectInfo
    commune: CommuneInfo
    entity: EntityInfo
    province: ProvinceInfo

    @classmethod
    def from_act(cls, act: CivilAct) -> "ActResponse":
        entity = act.commune.entity
        province = entity.province
        return cls(
            id=act.id,
            variant=act.variant,
            act_number=act.act_number,
            registration_date=act.registration_date,
            officer=act.officer,
            declarant=act.declarant,
            witness1=act.witness1,
            witness2=act.witness2,
            observations=act.observations,
            decisive_date=act.decisive_date,
            death_date=act.death_date,
            death_time=act.death_time,
            death_place=act.death_place,
            cause_of_death=act.cause_of_death,
            physician=act.physician,
            subject=SubjectInfo.from_person(act.subject),
            commune=CommuneInfo(id=act.commune.id, name=act.commune.name),
            entity=EntityInfo(id=entity.id, name=entity.name, is_city=entity.is_city),
            province=ProvinceInfo(id=province.id, name=province.name),
        )


class ActSummary(BaseModel):
    """Flat view of an act for list pages."""

    id: int
    variant: ActVariant
    act_number: str
    subject_id: int
    subject_full_name: str
    subject_sex: Sex
    decisive_date: Optional[date] = None
    registration_date: date
    death_place: Optional[str] = None
    commune: str
    entity: str
    province: str
    officer: str
    age_at_death: Optional[int] = None

    @classmethod
    def from_act(cls, act: CivilAct) -> "ActSummary":
        subject = act.subject
        age_at_death = None
        if act.variant == ActVariant.DEATH and subject.birth_date and act.death_date:
            age_at_death = age_in_years(subject.birth_date, act.death_date)
        return cls(
            id=act.id,
            variant=act.variant,
            act_number=act.act_number,
            subject_id=subject.id,
            subject_full_name=subject.full_name,
            subject_sex=subject.sex,
            decisive_date=act.decisive_date,
            registration_date=act.registration_date,
            death_place=act.death_place,
            commune=act.commune.name,
            entity=act.commune.entity.name,
            province=act.commune.entity.province.name,
            officer=act.officer,
            age_at_death=age_at_death,
        )


# ---------------------------------------------------------------------------
# Persons
# ---------------------------------------------------------------------------


class PersonCreate(BaseModel):
    """Request model for registering a person."""

    surname: str = Field(..., min_length=1, max_length=50)
    patronymic: str = Field(..., min_length=1, max_length=50)
    given_name: Optional[str] = Field(None, max_length=50)
    sex: Sex
    birth_date: Optional[date] = None
    birth_time: Optional[time] = None
    birthplace: Optional[str] = Field(None, max_length=100)
    profession: Optional[str] = Field(None, max_length=100)
    nationality: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, pattern=r"^(\+243|0)?[0-9]{9}$")
    email: Optional[str] = Field(None, max_length=50)
    father_id: Optional[int] = Field(None, gt=0)
    mother_id: Optional[int] = Field(None, gt=0)
    marital_status: MaritalStatus = MaritalStatus.SINGLE


class PersonUpdate(BaseModel):
    """Partial update of a person. Vital status is not editable here."""

    surname: Optional[str] = Field(None, min_length=1, max_length=50)
    patronymic: Optional[str] = Field(None, min_length=1, max_length=50)
    given_name: Optional[str] = Field(None, max_length=50)
    sex: Optional[Sex] = None
    birth_date: Optional[date] = None
    birth_time: Optional[time] = None
    birthplace: Optional[str] = Field(None, max_length=100)
    profession: Optional[str] = Field(None, max_length=100)
    nationality: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, pattern=r"^(\+243|0)?[0-9]{9}$")
    email: Optional[str] = Field(None, max_length=50)
    father_id: Optional[int] = Field(None, gt=0)
    mother_id: Optional[int] = Field(None, gt=0)


class PersonResponse(BaseModel):
    """Response model for a person."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    surname: str
    patronymic: str
    given_name: Optional[str] = None
    full_name: str
    sex: Sex
    birth_date: Optional[date] = None
    birth_time: Optional[time] = None
    birthplace: Optional[str] = None
    profession: Optional[str] = None
    nationality: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    father_id: Optional[int] = None
    mother_id: Optional[int] = None
    vital_status: VitalStatus
    marital_status: MaritalStatus


class VitalStatusChange(BaseModel):
    status: VitalStatus


class MaritalStatusChange(BaseModel):
    status: MaritalStatus


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


class BatchItem(ActCreate):
    """
    One row of a batch submission.

    ``sequence_number`` and ``reference`` only correlate input rows with
    output rows; they are never stored.
    """

    sequence_number: Optional[int] = None
    reference: Optional[str] = Field(None, max_length=100)


class BatchRequest(BaseModel):
    """Request model for bulk registration."""

    items: list[BatchItem]
    submitted_by: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=200)


class BatchValidationRequest(BaseModel):
    """Request model for a dry-run validation of a batch."""

    items: list[BatchItem]


class BatchItemOutcome(BaseModel):
    """Correlation fields shared by both outcome variants."""

    act_number: str
    subject_id: int
    sequence_number: int
    reference: Optional[str] = None


class BatchItemSuccess(BatchItemOutcome):
    outcome: Literal["success"] = "success"
    act_id: int


class BatchItemFailure(BatchItemOutcome):
    outcome: Literal["failure"] = "failure"
    error: str
    error_kind: str


BatchOutcome = Annotated[
    Union[BatchItemSuccess, BatchItemFailure],
    Field(discriminator="outcome"),
]


class BatchStatistics(BaseModel):
    """Aggregates over the submitted items (not only the successful ones)."""

    by_commune: dict[str, int]
    by_officer: dict[str, int]
    by_registration_date: dict[date, int]
    with_witnesses: int
    without_witnesses: int
    late_registrations: int
    # Death batches only
    with_cause_of_death: Optional[int] = None
    without_cause_of_death: Optional[int] = None


class BatchResult(BaseModel):
    """Report of a bulk registration."""

    variant: ActVariant
    success: bool
    message: str
    submitted_by: str
    total: int
    processed: int
    succeeded: int
    failed: int
    elapsed_ms: int
    results: list[BatchOutcome]
    statistics: BatchStatistics


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class BatchFinding(BaseModel):
    """Correlation fields shared by errors and alerts."""

    act_number: Optional[str] = None
    subject_id: Optional[int] = None
    sequence_number: int
    code: str
    message: str


class BatchValidationError(BatchFinding):
    """Blocking finding: the item would fail if committed."""

    field: Optional[str] = None


class BatchValidationAlert(BatchFinding):
    """Advisory finding: never blocks the batch."""

    severity: AlertSeverity = AlertSeverity.INFO


class BatchValidationReport(BaseModel):
    """Outcome of a dry-run validation."""

    variant: ActVariant
    valid: bool
    item_count: int
    errors: list[BatchValidationError]
    alerts: list[BatchValidationAlert]
    preliminary_statistics: Optional[BatchStatistics] = None


class PersonBatchRequest(BaseModel):
    """Several persons registered in one call."""

    persons: list[PersonCreate]


class PersonBatchFailure(BaseModel):
    """A person of the batch that was not registered."""

    index: int = Field(..., description="0-based position in the request")
    person: PersonCreate
    error: str
    error_kind: str


class PersonBatchResult(BaseModel):
    """Report of a person batch. Each person succeeds or fails on its own."""

    requested: int
    created: int
    failed: int
    persons: list[PersonResponse]
    failures: list[PersonBatchFailure]


# ---------------------------------------------------------------------------
# Registry statistics
# ---------------------------------------------------------------------------


class MonthlyCount(BaseModel):
    year: int
    month: int
    count: int


class ActRegistryStatistics(BaseModel):
    """Aggregates over every stored act of one variant."""

    variant: ActVariant
    total: int
    registered_today: int
    registered_this_month: int
    late_registrations: int
    by_commune: dict[str, int]
    by_officer: dict[str, int]
    by_month: list[MonthlyCount]
    by_sex: dict[str, int]
    # Death acts only
    by_cause: Optional[dict[str, int]] = None
    average_age_at_death: Optional[float] = None
    with_cause_of_death: Optional[int] = None
    without_cause_of_death: Optional[int] = None
    with_physician: Optional[int] = None
    without_physician: Optional[int] = None


# ---------------------------------------------------------------------------
# Paging
# ---------------------------------------------------------------------------


class Page(BaseModel, Generic[T]):
    """One page of results with navigation flags."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    content: list[T]
    total_elements: int
    total_pages: int
    page_number: int
    page_size: int
    has_next: bool
    has_previous: bool
    is_first: bool
    is_last: bool

    @classmethod
    def build(cls, content: list, total: int, page: int, size: int) -> "Page":
        total_pages = ceil(total / size) if size else 0
        return cls(
            content=content,
            total_elements=total,
            total_pages=total_pages,
            page_number=page,
            page_size=size,
            has_next=page + 1 < total_pages,
            has_previous=page > 0,
            is_first=page == 0,
            is_last=page + 1 >= total_pages,
        )

    def map(self, fn: Callable[[T], Any]) -> "Page":
        """Project the content, keeping paging metadata."""
        return Page(
            content=[fn(item) for item in self.content],
            **self.model_dump(exclude={"content"}),
        )
