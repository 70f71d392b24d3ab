"""
Act consistency coordinator.

Keeps a civil act consistent with the person it refers to and with the
commune where it was registered. Birth and death acts go through the same
engine; the variant decides the decisive date, the extra required fields
and whether the subject's vital status follows the act.

Creation runs its preconditions in a fixed order and writes nothing until
all of them pass:

1. act number not taken
2. subject exists
3. subject has no act of this variant yet
4. commune exists
5. act number format, variant fields, date coherence, age plausibility

The vital status update that follows a death act create/delete is
best-effort: it runs in its own savepoint and a failure is logged, never
raised. The act stays the authoritative record.
"""

import logging
from datetime import date
from typing import TYPE_CHECKING, Any, Optional

from etatcivil.config import settings
from etatcivil.db.orm import ActVariant, CivilAct, Person, VitalStatus
from etatcivil.errors import (
    ACT_NUMBER_EXISTS,
    SUBJECT_HAS_ACT,
    DuplicateError,
    InvalidActError,
    NotFoundError,
)
from etatcivil.registry.lifecycle import PersonLifecycleManager
from etatcivil.registry.query import ActSearchCriteria, PageRequest
from etatcivil.registry.rules import (
    check_act_number,
    check_age_at_death,
    check_dates,
    check_officer,
    clean_text,
    has_text,
    normalize_act_number,
)
from etatcivil.registry.schemas import (
    ActCreate,
    ActRegistryStatistics,
    ActUpdate,
    Page,
)
from etatcivil.registry.statistics import summarize_acts

if TYPE_CHECKING:
    from etatcivil.db.repositories import (
        ActRepository,
        PersonRepository,
        TerritoryRepository,
    )

logger = logging.getLogger(__name__)

# Vital status the subject is moved to when an act is created / deleted
STATUS_ON_CREATE = {ActVariant.DEATH: VitalStatus.DECEASED}
STATUS_ON_DELETE = {ActVariant.DEATH: VitalStatus.ALIVE}

REQUIRED_FIELDS = ("act_number", "commune_id", "officer", "registration_date")
DEATH_FIELDS = ("death_date", "death_time", "death_place", "cause_of_death", "physician")
# A change to any of these re-runs the date checks of the act
DATE_CHECK_FIELDS = ("registration_date", "death_date", "death_place")
TEXT_FIELDS = (
    "declarant",
    "witness1",
    "witness2",
    "observations",
    "death_place",
    "cause_of_death",
    "physician",
)


def decisive_date_of(
    variant: ActVariant,
    death_date: Optional[date],
    subject: Optional[Person],
) -> Optional[date]:
    """Death date for death acts, subject birth date for birth acts."""
    if variant == ActVariant.DEATH:
        return death_date
    return subject.birth_date if subject else None


class ActCoordinator:
    """Create, update, delete and read civil acts of one or both variants."""

    def __init__(
        self,
        acts: "ActRepository",
        persons: "PersonRepository",
        territory: "TerritoryRepository",
        lifecycle: Optional[PersonLifecycleManager] = None,
        act_number_min_length: Optional[int] = None,
        max_age_at_death_years: Optional[int] = None,
    ):
        self.acts = acts
        self.persons = persons
        self.territory = territory
        self.lifecycle = lifecycle or PersonLifecycleManager(persons)
        self.act_number_min_length = (
            settings.death_act_number_min_length
            if act_number_min_length is None
            else act_number_min_length
        )
        self.max_age_at_death_years = (
            settings.max_age_at_death_years
            if max_age_at_death_years is None
            else max_age_at_death_years
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_fields(
        self,
        variant: ActVariant,
        act_number: str,
        registration_date: date,
        death_date: Optional[date],
        death_place: Optional[str],
        subject: Person,
        today: date,
    ) -> str:
        """
        Domain checks that need no store access.

        Returns:
            The normalized act number

        Raises:
            InvalidActError: On the first failed check
        """
        normalized = check_act_number(act_number, variant, self.act_number_min_length)
        self.validate_dates(
            variant, registration_date, death_date, death_place, subject, today
        )
        return normalized

    def validate_dates(
        self,
        variant: ActVariant,
        registration_date: date,
        death_date: Optional[date],
        death_place: Optional[str],
        subject: Person,
        today: date,
    ) -> None:
        """Variant fields, date coherence and age plausibility."""
        if variant == ActVariant.DEATH:
            if death_date is None:
                raise InvalidActError(
                    "The death date is required", field="death_date"
                )
            if not has_text(death_place):
                raise InvalidActError(
                    "The place of death is required", field="death_place"
                )

        decisive = decisive_date_of(variant, death_date, subject)
        check_dates(registration_date, decisive, today)

        if variant == ActVariant.DEATH:
            check_age_at_death(
                subject.birth_date, death_date, self.max_age_at_death_years
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        variant: ActVariant,
        request: ActCreate,
        today: Optional[date] = None,
    ) -> CivilAct:
        """
        Register a new act.

        Raises:
            DuplicateError: Number taken, or the subject already has an act
            NotFoundError: Unknown subject or commune
            InvalidActError: Format, date or plausibility check failed
        """
        today = today or date.today()
        act_number = normalize_act_number(request.act_number)

        if await self.acts.number_exists(variant, act_number):
            raise DuplicateError(ACT_NUMBER_EXISTS, field="act_number")

        subject = await self.persons.get_by_id(request.subject_id)
        if subject is None:
            raise NotFoundError(
                f"Person not found with ID: {request.subject_id}", field="subject_id"
            )

        if await self.acts.subject_has_act(variant, request.subject_id):
            raise DuplicateError(SUBJECT_HAS_ACT, field="subject_id")

        if not await self.territory.commune_exists(request.commune_id):
            raise NotFoundError(
                f"Commune not found with ID: {request.commune_id}", field="commune_id"
            )

        act_number = self.validate_fields(
            variant,
            act_number,
            request.registration_date,
            request.death_date,
            request.death_place,
            subject,
            today,
        )
        officer = check_officer(request.officer)

        act = CivilAct(
            variant=variant,
            act_number=act_number,
            subject_id=subject.id,
            commune_id=request.commune_id,
            officer=officer,
            registration_date=request.registration_date,
            declarant=clean_text(request.declarant),
            witness1=clean_text(request.witness1),
            witness2=clean_text(request.witness2),
            observations=clean_text(request.observations),
        )
        if variant == ActVariant.DEATH:
            act.death_date = request.death_date
            act.death_time = request.death_time
            act.death_place = clean_text(request.death_place)
            act.cause_of_death = clean_text(request.cause_of_death)
            act.physician = clean_text(request.physician)

        act = await self.acts.add(act)
        logger.info(f"Created {variant.value} act {act_number} (ID: {act.id})")

        new_status = STATUS_ON_CREATE.get(variant)
        if new_status is not None:
            await self._update_status(subject.id, new_status)

        return await self._get(variant, act.id)

    async def update(
        self,
        variant: ActVariant,
        act_id: int,
        request: ActUpdate,
        today: Optional[date] = None,
    ) -> CivilAct:
        """
        Apply a partial update.

        Fields absent from the request keep their value and are not
        re-checked. A new act number gets the format check; a new
        registration date, death date or place of death gets the variant
        and date checks against the stored values of the other two. Nothing
        is written until the checks pass, and the subject's vital status is
        not touched.
        """
        today = today or date.today()
        act = await self._get(variant, act_id)
        changes = request.model_dump(exclude_unset=True)
        if variant != ActVariant.DEATH:
            for field in DEATH_FIELDS:
                changes.pop(field, None)

        for field in REQUIRED_FIELDS:
            if field in changes and changes[field] is None:
                raise InvalidActError(f"The field {field} cannot be cleared", field=field)

        if "act_number" in changes:
            new_number = normalize_act_number(changes["act_number"])
            if new_number != act.act_number and await self.acts.number_exists(
                variant, new_number, exclude_id=act.id
            ):
                raise DuplicateError(ACT_NUMBER_EXISTS, field="act_number")

        if "commune_id" in changes and changes["commune_id"] != act.commune_id:
            if not await self.territory.commune_exists(changes["commune_id"]):
                raise NotFoundError(
                    f"Commune not found with ID: {changes['commune_id']}",
                    field="commune_id",
                )

        for field in TEXT_FIELDS:
            if field in changes:
                changes[field] = clean_text(changes[field])
        if "officer" in changes:
            changes["officer"] = check_officer(changes["officer"])
        if "act_number" in changes:
            changes["act_number"] = check_act_number(
                changes["act_number"], variant, self.act_number_min_length
            )

        if any(field in changes for field in DATE_CHECK_FIELDS):
            merged: dict[str, Any] = {
                field: changes.get(field, getattr(act, field))
                for field in DATE_CHECK_FIELDS
            }
            self.validate_dates(variant, **merged, subject=act.subject, today=today)

        for field, value in changes.items():
            setattr(act, field, value)
        await self.acts.save(act)
        logger.info(
            f"Updated {variant.value} act {act.act_number} (ID: {act.id}): "
            f"{sorted(changes)}"
        )
        return await self._get(variant, act.id)

    async def delete(self, variant: ActVariant, act_id: int) -> None:
        """
        Delete an act, then move the subject back (death acts only).

        Raises:
            NotFoundError: If the act does not exist
        """
        act = await self._get(variant, act_id)
        subject_id = act.subject_id
        act_number = act.act_number

        await self.acts.delete(act)
        logger.info(f"Deleted {variant.value} act {act_number} (ID: {act_id})")

        new_status = STATUS_ON_DELETE.get(variant)
        if new_status is not None:
            await self._update_status(subject_id, new_status)

    async def _update_status(self, person_id: int, new_status: VitalStatus) -> None:
        """Best-effort vital status change; failures are logged only."""
        try:
            async with self.persons.savepoint():
                await self.lifecycle.transition(person_id, new_status)
        except Exception:
            logger.warning(
                f"Could not set vital status of person {person_id} to "
                f"{new_status.value}; the act is kept",
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _get(self, variant: ActVariant, act_id: int) -> CivilAct:
        act = await self.acts.get_by_id(variant, act_id)
        if act is None:
            raise NotFoundError(f"{variant.value.capitalize()} act not found with ID: {act_id}")
        return act

    async def get(self, variant: ActVariant, act_id: int) -> CivilAct:
        """Get a fully resolved act."""
        return await self._get(variant, act_id)

    async def get_by_number(self, variant: ActVariant, act_number: str) -> CivilAct:
        normalized = normalize_act_number(act_number)
        act = await self.acts.get_by_number(variant, normalized)
        if act is None:
            raise NotFoundError(
                f"{variant.value.capitalize()} act not found with number: {normalized}"
            )
        return act

    async def get_by_subject(self, variant: ActVariant, person_id: int) -> CivilAct:
        act = await self.acts.get_by_subject(variant, person_id)
        if act is None:
            raise NotFoundError(
                f"No {variant.value} act found for person ID: {person_id}"
            )
        return act

    async def number_exists(self, variant: ActVariant, act_number: str) -> bool:
        return await self.acts.number_exists(variant, normalize_act_number(act_number))

    async def subject_has_act(self, variant: ActVariant, person_id: int) -> bool:
        return await self.acts.subject_has_act(variant, person_id)

    async def search(
        self,
        variant: ActVariant,
        criteria: ActSearchCriteria,
        page: PageRequest,
    ) -> Page[CivilAct]:
        return await self.acts.search(variant, criteria, page)

    async def count(
        self,
        variant: ActVariant,
        commune_id: Optional[int] = None,
        entity_id: Optional[int] = None,
        province_id: Optional[int] = None,
    ) -> int:
        """Count acts in a commune, territorial entity or province."""
        if commune_id is None and entity_id is None and province_id is None:
            raise InvalidActError(
                "A commune, territorial entity or province ID is required"
            )
        return await self.acts.count(
            variant,
            commune_id=commune_id,
            entity_id=entity_id,
            province_id=province_id,
        )

    async def statistics(
        self,
        variant: ActVariant,
        today: Optional[date] = None,
        late_after_days: Optional[int] = None,
    ) -> ActRegistryStatistics:
        """Registry-wide aggregates over every act of a variant."""
        facts = await self.acts.statistics_facts(variant)
        return summarize_acts(
            variant,
            facts,
            today or date.today(),
            settings.late_registration_days if late_after_days is None else late_after_days,
        )
