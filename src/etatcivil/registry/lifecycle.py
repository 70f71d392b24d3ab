"""
Person lifecycle management.

The vital status of a person is only written here. The act coordinator
drives ALIVE -> DECEASED when a death act is created and DECEASED -> ALIVE
when it is deleted; administrators may also set any status explicitly.
No transition is refused by the manager itself.
"""

import logging
from typing import TYPE_CHECKING

from etatcivil.db.orm import MaritalStatus, Person, VitalStatus
from etatcivil.errors import NotFoundError

if TYPE_CHECKING:
    from etatcivil.db.repositories import PersonRepository

logger = logging.getLogger(__name__)


class PersonLifecycleManager:
    """Single write path for a person's vital and marital status."""

    def __init__(self, persons: "PersonRepository"):
        self.persons = persons

    async def _load(self, person_id: int) -> Person:
        person = await self.persons.get_by_id(person_id)
        if person is None:
            raise NotFoundError(f"Person not found with ID: {person_id}")
        return person

    async def transition(self, person_id: int, new_status: VitalStatus) -> Person:
        """
        Set the vital status of a person.

        Only ``vital_status`` is touched.

        Raises:
            NotFoundError: If the person does not exist
        """
        person = await self._load(person_id)
        previous = person.vital_status
        person.vital_status = new_status
        await self.persons.save(person)

        logger.info(
            f"Person {person_id} vital status: {previous.value} -> {new_status.value}"
        )
        return person

    async def change_marital_status(
        self, person_id: int, new_status: MaritalStatus
    ) -> Person:
        """Set the marital status of a person."""
        person = await self._load(person_id)
        person.marital_status = new_status
        await self.persons.save(person)
        logger.info(f"Person {person_id} marital status: {new_status.value}")
        return person
