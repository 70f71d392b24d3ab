"""
Dry-run validation of a batch.

Runs the same checks as act creation against every item without writing
anything and without touching vital statuses. Findings are split into
blocking errors and advisory alerts; the batch is valid when there is no
error at all. Preliminary statistics are only produced for a valid batch.
"""

import logging
from collections import Counter
from datetime import date
from typing import TYPE_CHECKING, Optional, Sequence

from etatcivil.config import settings
from etatcivil.db.orm import ActVariant, Person
from etatcivil.errors import InvalidActError
from etatcivil.registry.batch import compute_statistics, sequence_of
from etatcivil.registry.coordinator import decisive_date_of
from etatcivil.registry.rules import (
    check_act_number,
    check_age_at_death,
    has_text,
    has_witnesses,
    normalize_act_number,
)
from etatcivil.registry.schemas import (
    AlertSeverity,
    BatchItem,
    BatchValidationAlert,
    BatchValidationError,
    BatchValidationReport,
)

if TYPE_CHECKING:
    from etatcivil.db.repositories import (
        ActRepository,
        PersonRepository,
        TerritoryRepository,
    )

logger = logging.getLogger(__name__)


class ErrorCode:
    """Codes of blocking findings."""

    BATCH_EMPTY = "BATCH_EMPTY"
    BATCH_TOO_LARGE = "BATCH_TOO_LARGE"
    DUPLICATE_IN_BATCH = "DUPLICATE_IN_BATCH"
    DUPLICATE_SUBJECT_IN_BATCH = "DUPLICATE_SUBJECT_IN_BATCH"
    SUBJECT_NOT_FOUND = "SUBJECT_NOT_FOUND"
    COMMUNE_NOT_FOUND = "COMMUNE_NOT_FOUND"
    ACT_NUMBER_EXISTS = "ACT_NUMBER_EXISTS"
    SUBJECT_ALREADY_HAS_ACT = "SUBJECT_ALREADY_HAS_ACT"
    INVALID_ACT_NUMBER = "INVALID_ACT_NUMBER"
    MISSING_OFFICER = "MISSING_OFFICER"
    MISSING_DEATH_DATE = "MISSING_DEATH_DATE"
    MISSING_DEATH_PLACE = "MISSING_DEATH_PLACE"
    FUTURE_DECISIVE_DATE = "FUTURE_DECISIVE_DATE"
    INCONSISTENT_DATES = "INCONSISTENT_DATES"
    IMPLAUSIBLE_AGE = "IMPLAUSIBLE_AGE"


class AlertCode:
    """Codes of advisory findings."""

    MISSING_WITNESSES = "MISSING_WITNESSES"
    MISSING_DECLARANT = "MISSING_DECLARANT"
    MISSING_CAUSE = "MISSING_CAUSE"
    FUTURE_REGISTRATION = "FUTURE_REGISTRATION"


class BatchValidator:
    """
    Read-only batch checker.

    Only query methods of the repositories are used.
    """

    def __init__(
        self,
        acts: "ActRepository",
        persons: "PersonRepository",
        territory: "TerritoryRepository",
        max_size: Optional[int] = None,
        late_after_days: Optional[int] = None,
        act_number_min_length: Optional[int] = None,
        max_age_at_death_years: Optional[int] = None,
    ):
        self.acts = acts
        self.persons = persons
        self.territory = territory
        self.max_size = settings.batch_max_size if max_size is None else max_size
        self.late_after_days = (
            settings.late_registration_days if late_after_days is None else late_after_days
        )
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

    async def validate(
        self,
        variant: ActVariant,
        items: Sequence[BatchItem],
        today: Optional[date] = None,
    ) -> BatchValidationReport:
        """Check every item and classify the findings. Never raises on content."""
        today = today or date.today()
        items = list(items)
        errors: list[BatchValidationError] = self._structure_errors(items)
        alerts: list[BatchValidationAlert] = []
        decisive_dates: list[Optional[date]] = []

        for index, item in enumerate(items):
            sequence = sequence_of(item, index)
            subject = await self.persons.get_by_id(item.subject_id)
            item_errors = await self._item_errors(variant, item, subject, today)
            errors.extend(
                self._error(item, sequence, code, message, field)
                for code, message, field in item_errors
            )
            alerts.extend(
                self._alert(item, sequence, code, message, severity)
                for code, message, severity in self._item_alerts(variant, item, today)
            )
            decisive_dates.append(decisive_date_of(variant, item.death_date, subject))

        preliminary = None
        if not errors:
            preliminary = compute_statistics(
                variant, items, decisive_dates, self.late_after_days
            )

        logger.info(
            f"Validated {variant.value} batch of {len(items)} items: "
            f"{len(errors)} errors, {len(alerts)} alerts"
        )

        return BatchValidationReport(
            variant=variant,
            valid=not errors,
            item_count=len(items),
            errors=errors,
            alerts=alerts,
            preliminary_statistics=preliminary,
        )

    def _structure_errors(self, items: list[BatchItem]) -> list[BatchValidationError]:
        if not items:
            return [
                BatchValidationError(
                    sequence_number=0,
                    code=ErrorCode.BATCH_EMPTY,
                    message="The batch must contain at least one item",
                )
            ]

        errors = []
        if len(items) > self.max_size:
            errors.append(
                BatchValidationError(
                    sequence_number=0,
                    code=ErrorCode.BATCH_TOO_LARGE,
                    message=f"The batch cannot contain more than {self.max_size} items",
                )
            )

        seen: Counter = Counter()
        seen_subjects: Counter = Counter()
        for index, item in enumerate(items):
            number = normalize_act_number(item.act_number)
            if seen[number]:
                errors.append(
                    self._error(
                        item,
                        sequence_of(item, index),
                        ErrorCode.DUPLICATE_IN_BATCH,
                        f"Act number {number} appears more than once in the batch",
                        "act_number",
                    )
                )
            # The first item for a subject may pass; every later one would fail
            if seen_subjects[item.subject_id]:
                errors.append(
                    self._error(
                        item,
                        sequence_of(item, index),
                        ErrorCode.DUPLICATE_SUBJECT_IN_BATCH,
                        f"Person with ID {item.subject_id} appears more than once "
                        f"in the batch",
                        "subject_id",
                    )
                )
            seen[number] += 1
            seen_subjects[item.subject_id] += 1
        return errors

    async def _item_errors(
        self,
        variant: ActVariant,
        item: BatchItem,
        subject: Optional[Person],
        today: date,
    ) -> list[tuple[str, str, Optional[str]]]:
        found: list[tuple[str, str, Optional[str]]] = []
        number = normalize_act_number(item.act_number)

        if subject is None:
            found.append((
                ErrorCode.SUBJECT_NOT_FOUND,
                f"Person with ID {item.subject_id} does not exist",
                "subject_id",
            ))

        if not await self.territory.commune_exists(item.commune_id):
            found.append((
                ErrorCode.COMMUNE_NOT_FOUND,
                f"Commune with ID {item.commune_id} does not exist",
                "commune_id",
            ))

        if await self.acts.number_exists(variant, number):
            found.append((
                ErrorCode.ACT_NUMBER_EXISTS,
                f"Act number {number} already exists",
                "act_number",
            ))

        if subject is not None and await self.acts.subject_has_act(variant, subject.id):
            found.append((
                ErrorCode.SUBJECT_ALREADY_HAS_ACT,
                f"Person with ID {subject.id} already has a {variant.value} act",
                "subject_id",
            ))

        try:
            check_act_number(item.act_number, variant, self.act_number_min_length)
        except InvalidActError as e:
            found.append((ErrorCode.INVALID_ACT_NUMBER, e.message, e.field))

        if not has_text(item.officer):
            found.append((
                ErrorCode.MISSING_OFFICER, "The registering officer is required", "officer"
            ))

        if variant == ActVariant.DEATH:
            if item.death_date is None:
                found.append((
                    ErrorCode.MISSING_DEATH_DATE, "The death date is required", "death_date"
                ))
            if not has_text(item.death_place):
                found.append((
                    ErrorCode.MISSING_DEATH_PLACE,
                    "The place of death is required",
                    "death_place",
                ))

        decisive = decisive_date_of(variant, item.death_date, subject)
        if decisive is not None:
            if decisive > today:
                found.append((
                    ErrorCode.FUTURE_DECISIVE_DATE,
                    "The decisive date cannot be in the future",
                    "decisive_date",
                ))
            if item.registration_date < decisive:
                found.append((
                    ErrorCode.INCONSISTENT_DATES,
                    "The registration date cannot be earlier than the decisive date",
                    "registration_date",
                ))

        if variant == ActVariant.DEATH and subject is not None and item.death_date:
            try:
                check_age_at_death(
                    subject.birth_date, item.death_date, self.max_age_at_death_years
                )
            except InvalidActError as e:
                found.append((ErrorCode.IMPLAUSIBLE_AGE, e.message, e.field))

        return found

    @staticmethod
    def _item_alerts(
        variant: ActVariant,
        item: BatchItem,
        today: date,
    ) -> list[tuple[str, str, AlertSeverity]]:
        found = []
        if not has_witnesses(item.witness1, item.witness2):
            found.append((
                AlertCode.MISSING_WITNESSES,
                "No witness is specified",
                AlertSeverity.WARNING,
            ))
        if not has_text(item.declarant):
            found.append((
                AlertCode.MISSING_DECLARANT,
                "The declarant is not specified",
                AlertSeverity.INFO,
            ))
        if variant == ActVariant.DEATH and not has_text(item.cause_of_death):
            found.append((
                AlertCode.MISSING_CAUSE,
                "The cause of death is not specified",
                AlertSeverity.WARNING,
            ))
        if item.registration_date > today:
            found.append((
                AlertCode.FUTURE_REGISTRATION,
                "The registration date is in the future",
                AlertSeverity.WARNING,
            ))
        return found

    @staticmethod
    def _error(
        item: BatchItem,
        sequence: int,
        code: str,
        message: str,
        field: Optional[str],
    ) -> BatchValidationError:
        return BatchValidationError(
            act_number=normalize_act_number(item.act_number),
            subject_id=item.subject_id,
            sequence_number=sequence,
            code=code,
            message=message,
            field=field,
        )

    @staticmethod
    def _alert(
        item: BatchItem,
        sequence: int,
        code: str,
        message: str,
        severity: AlertSeverity,
    ) -> BatchValidationAlert:
        return BatchValidationAlert(
            act_number=normalize_act_number(item.act_number),
            subject_id=item.subject_id,
            sequence_number=sequence,
            code=code,
            message=message,
            severity=severity,
        )
