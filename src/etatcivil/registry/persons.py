"""
Person registration and maintenance.

Names are stored trimmed and upper-cased, e-mail addresses lower-cased.
Vital status changes go through the lifecycle manager.
"""

import logging
from typing import TYPE_CHECKING, Any, Optional, Sequence

from etatcivil.config import settings
from etatcivil.db.orm import MaritalStatus, Person, Sex, VitalStatus
from etatcivil.errors import (
    DuplicateError,
    InvalidActError,
    NotFoundError,
    RegistryError,
)
from etatcivil.registry.lifecycle import PersonLifecycleManager
from etatcivil.registry.query import PageRequest, PersonSearchCriteria, SortDirection
from etatcivil.registry.rules import clean_text
from etatcivil.registry.schemas import (
    Page,
    PersonBatchFailure,
    PersonBatchResult,
    PersonCreate,
    PersonResponse,
    PersonUpdate,
)

if TYPE_CHECKING:
    from etatcivil.db.repositories import PersonRepository

logger = logging.getLogger(__name__)

DEFAULT_NATIONALITY = "Congolaise"


def _upper(value: Optional[str]) -> Optional[str]:
    value = clean_text(value)
    return value.upper() if value else None


def _lower(value: Optional[str]) -> Optional[str]:
    value = clean_text(value)
    return value.lower() if value else None


def normalize_person_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Apply storage conventions to whichever person fields are present."""
    normalized = dict(fields)
    for name in ("surname", "patronymic", "given_name"):
        if name in normalized:
            normalized[name] = _upper(normalized[name])
    for name in ("birthplace", "profession", "address", "phone"):
        if name in normalized:
            normalized[name] = clean_text(normalized[name])
    if "nationality" in normalized:
        normalized["nationality"] = clean_text(normalized["nationality"]) or DEFAULT_NATIONALITY
    if "email" in normalized:
        normalized["email"] = _lower(normalized["email"])
    return normalized


class PersonService:
    """CRUD and status changes for persons."""

    def __init__(
        self,
        persons: "PersonRepository",
        lifecycle: Optional[PersonLifecycleManager] = None,
        batch_max_size: Optional[int] = None,
    ):
        self.persons = persons
        self.lifecycle = lifecycle or PersonLifecycleManager(persons)
        self.batch_max_size = (
            settings.person_batch_max_size if batch_max_size is None else batch_max_size
        )

    async def _parent(self, parent_id: int, role: str) -> Person:
        parent = await self.persons.get_by_id(parent_id)
        if parent is None:
            raise NotFoundError(
                f"{role.capitalize()} not found with ID: {parent_id}", field=f"{role}_id"
            )
        return parent

    async def get(self, person_id: int) -> Person:
        person = await self.persons.get_by_id(person_id)
        if person is None:
            raise NotFoundError(f"Person not found with ID: {person_id}")
        return person

    async def create(self, request: PersonCreate) -> Person:
        """
        Register a new person.

        Raises:
            DuplicateError: Same names and birth date already registered
            NotFoundError: Unknown father or mother
            InvalidActError: Father not male or mother not female
        """
        fields = normalize_person_fields(request.model_dump())

        if fields["birth_date"] is not None:
            existing = await self.persons.find_by_identity(
                fields["surname"],
                fields["patronymic"],
                fields["given_name"],
                fields["birth_date"],
            )
            if existing is not None:
                raise DuplicateError(
                    "A person with this full name and birth date already exists"
                )

        if fields["father_id"] is not None:
            father = await self._parent(fields["father_id"], "father")
            if father.sex != Sex.MALE:
                raise InvalidActError("The father must be male", field="father_id")

        if fields["mother_id"] is not None:
            mother = await self._parent(fields["mother_id"], "mother")
            if mother.sex != Sex.FEMALE:
                raise InvalidActError("The mother must be female", field="mother_id")

        person = Person(**fields, vital_status=VitalStatus.ALIVE)
        person = await self.persons.add(person)
        logger.info(f"Created person {person.full_name} (ID: {person.id})")
        return await self.get(person.id)

    async def create_batch(self, requests: Sequence[PersonCreate]) -> PersonBatchResult:
        """
        Register several persons, each in its own savepoint.

        A failing person is reported with its 0-based position and rolled
        back alone; the others are still registered. Persons created
        earlier in the batch count for the duplicate check of later ones.

        Raises:
            InvalidActError: If the batch is empty or too large; nothing is
                attempted in that case
        """
        requests = list(requests)
        if not requests:
            raise InvalidActError("The batch must contain at least one person")
        if len(requests) > self.batch_max_size:
            raise InvalidActError(
                f"The batch cannot contain more than {self.batch_max_size} persons "
                f"(received {len(requests)})"
            )

        created: list[PersonResponse] = []
        failures: list[PersonBatchFailure] = []

        for index, request in enumerate(requests):
            try:
                async with self.persons.savepoint():
                    person = await self.create(request)
            except RegistryError as e:
                failures.append(
                    PersonBatchFailure(
                        index=index, person=request, error=e.message, error_kind=e.kind
                    )
                )
                logger.warning(f"Person batch item {index} failed: {e.message}")
            except Exception as e:
                failures.append(
                    PersonBatchFailure(
                        index=index, person=request, error=str(e), error_kind="unexpected"
                    )
                )
                logger.exception(f"Person batch item {index} failed unexpectedly")
            else:
                created.append(PersonResponse.model_validate(person))

        logger.info(
            f"Person batch: {len(created)} of {len(requests)} created, "
            f"{len(failures)} failed"
        )
        return PersonBatchResult(
            requested=len(requests),
            created=len(created),
            failed=len(failures),
            persons=created,
            failures=failures,
        )

    async def update(self, person_id: int, request: PersonUpdate) -> Person:
        """
        Apply a partial update.

        A person cannot be recorded as their own father or mother; longer
        ancestry loops are not detected.
        """
        person = await self.get(person_id)
        changes = normalize_person_fields(request.model_dump(exclude_unset=True))

        for name in ("surname", "patronymic", "sex"):
            if name in changes and changes[name] is None:
                raise InvalidActError(f"The field {name} cannot be cleared", field=name)

        if changes.get("father_id") is not None:
            if changes["father_id"] == person_id:
                raise InvalidActError(
                    "A person cannot be their own father", field="father_id"
                )
            await self._parent(changes["father_id"], "father")

        if changes.get("mother_id") is not None:
            if changes["mother_id"] == person_id:
                raise InvalidActError(
                    "A person cannot be their own mother", field="mother_id"
                )
            await self._parent(changes["mother_id"], "mother")

        identity = {
            name: changes.get(name, getattr(person, name))
            for name in ("surname", "patronymic", "given_name", "birth_date")
        }
        if identity["birth_date"] is not None:
            existing = await self.persons.find_by_identity(**identity)
            if existing is not None and existing.id != person_id:
                raise DuplicateError(
                    "Another person with this full name and birth date already exists"
                )

        for name, value in changes.items():
            setattr(person, name, value)
        await self.persons.save(person)
        logger.info(f"Updated person {person_id}: {sorted(changes)}")
        return await self.get(person_id)

    async def delete(self, person_id: int) -> None:
        """
        Delete a person.

        Raises:
            NotFoundError: If the person does not exist
            InvalidActError: If the person is recorded as someone's parent
            DuplicateError: If a civil act still references the person
        """
        person = await self.get(person_id)
        if await self.persons.is_parent(person_id):
            raise InvalidActError(
                "This person cannot be deleted because children are recorded"
            )
        await self.persons.delete(person)
        logger.info(f"Deleted person {person_id}")

    async def search(
        self,
        criteria: PersonSearchCriteria,
        page: PageRequest,
    ) -> Page[Person]:
        return await self.persons.search(criteria, page)

    async def children(self, parent_id: int, page: PageRequest) -> Page[Person]:
        """Children of a person, youngest first."""
        parent = await self.get(parent_id)
        if parent.sex == Sex.MALE:
            criteria = PersonSearchCriteria(father_id=parent_id)
        else:
            criteria = PersonSearchCriteria(mother_id=parent_id)
        page.sort_by = page.sort_by or "birth_date"
        page.direction = page.direction or SortDirection.DESC
        return await self.persons.search(criteria, page)

    async def change_vital_status(self, person_id: int, status: VitalStatus) -> Person:
        """Administrative override of the vital status."""
        return await self.lifecycle.transition(person_id, status)

    async def change_marital_status(
        self, person_id: int, status: MaritalStatus
    ) -> Person:
        return await self.lifecycle.change_marital_status(person_id, status)
