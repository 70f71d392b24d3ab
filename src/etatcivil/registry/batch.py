"""
Bulk act registration.

A batch is first checked as a whole (non-empty, bounded, no act number
repeated inside it); a structurally bad batch is rejected before any item
is attempted. Items are then created one by one through the coordinator,
each inside its own savepoint: a failing item is reported and rolled back
alone, earlier successes stay written.
"""

import logging
import time
from collections import Counter
from datetime import date
from typing import TYPE_CHECKING, Optional, Sequence, Union

from etatcivil.config import settings
from etatcivil.db.orm import ActVariant
from etatcivil.errors import BatchRejectedError, RegistryError
from etatcivil.registry.coordinator import ActCoordinator
from etatcivil.registry.rules import (
    has_text,
    has_witnesses,
    is_late_registration,
    normalize_act_number,
)
from etatcivil.registry.schemas import (
    BatchItem,
    BatchItemFailure,
    BatchItemSuccess,
    BatchRequest,
    BatchResult,
    BatchStatistics,
)

if TYPE_CHECKING:
    from etatcivil.db.repositories import PersonRepository

logger = logging.getLogger(__name__)


def sequence_of(item: BatchItem, index: int) -> int:
    """Caller-supplied sequence number, or the 1-based input position."""
    return item.sequence_number if item.sequence_number is not None else index + 1


def check_batch_structure(items: Sequence[BatchItem], max_size: int) -> None:
    """
    Reject a batch that must not be attempted at all.

    Act numbers are compared against each other only, after normalization.

    Raises:
        BatchRejectedError: kind ``invalid`` for an empty or oversized batch,
            kind ``duplicate`` when an act number appears twice
    """
    if not items:
        raise BatchRejectedError("The batch must contain at least one item")

    if len(items) > max_size:
        raise BatchRejectedError(
            f"The batch cannot contain more than {max_size} items "
            f"(received {len(items)})"
        )

    counts = Counter(normalize_act_number(item.act_number) for item in items)
    duplicates = sorted(number for number, count in counts.items() if count > 1)
    if duplicates:
        raise BatchRejectedError(
            f"Duplicate act numbers in batch: {', '.join(duplicates)}",
            kind="duplicate",
            act_numbers=duplicates,
        )


async def resolve_decisive_dates(
    variant: ActVariant,
    items: Sequence[BatchItem],
    persons: "PersonRepository",
) -> list[Optional[date]]:
    """
    Decisive date of each item, in input order.

    Death items carry it; birth items take it from the subject's record
    (``None`` when the subject is unknown or has no birth date).
    """
    if variant == ActVariant.DEATH:
        return [item.death_date for item in items]

    subjects = await persons.get_by_ids(sorted({item.subject_id for item in items}))
    birth_dates = {person.id: person.birth_date for person in subjects}
    return [birth_dates.get(item.subject_id) for item in items]


def compute_statistics(
    variant: ActVariant,
    items: Sequence[BatchItem],
    decisive_dates: Sequence[Optional[date]],
    late_after_days: int = 30,
) -> BatchStatistics:
    """Aggregate over the input items, whatever their outcome."""
    by_commune: Counter = Counter()
    by_officer: Counter = Counter()
    by_registration_date: Counter = Counter()
    with_witnesses = 0
    late = 0
    with_cause = 0

    for item, decisive in zip(items, decisive_dates):
        by_commune[str(item.commune_id)] += 1
        by_officer[item.officer.strip()] += 1
        by_registration_date[item.registration_date] += 1
        if has_witnesses(item.witness1, item.witness2):
            with_witnesses += 1
        if is_late_registration(item.registration_date, decisive, late_after_days):
            late += 1
        if has_text(item.cause_of_death):
            with_cause += 1

    stats = BatchStatistics(
        by_commune=dict(by_commune),
        by_officer=dict(by_officer),
        by_registration_date=dict(sorted(by_registration_date.items())),
        with_witnesses=with_witnesses,
        without_witnesses=len(items) - with_witnesses,
        late_registrations=late,
    )
    if variant == ActVariant.DEATH:
        stats.with_cause_of_death = with_cause
        stats.without_cause_of_death = len(items) - with_cause
    return stats


class BatchProcessor:
    """Drives a batch of creations through the act coordinator."""

    def __init__(
        self,
        coordinator: ActCoordinator,
        max_size: Optional[int] = None,
        late_after_days: Optional[int] = None,
    ):
        self.coordinator = coordinator
        self.max_size = settings.batch_max_size if max_size is None else max_size
        self.late_after_days = (
            settings.late_registration_days if late_after_days is None else late_after_days
        )

    async def process(
        self,
        variant: ActVariant,
        request: BatchRequest,
        today: Optional[date] = None,
    ) -> BatchResult:
        """
        Create every item of a batch, isolating failures per item.

        Raises:
            BatchRejectedError: If the batch fails the structural check;
                nothing is attempted in that case
        """
        items = list(request.items)
        check_batch_structure(items, self.max_size)

        logger.info(
            f"Processing {variant.value} batch of {len(items)} items "
            f"submitted by {request.submitted_by}"
        )

        results: list[Union[BatchItemSuccess, BatchItemFailure]] = []
        succeeded = 0
        failed = 0
        started = time.perf_counter()

        for index, item in enumerate(items):
            sequence = sequence_of(item, index)
            correlation = {
                "act_number": normalize_act_number(item.act_number),
                "subject_id": item.subject_id,
                "sequence_number": sequence,
                "reference": item.reference,
            }
            try:
                async with self.coordinator.acts.savepoint():
                    act = await self.coordinator.create(variant, item, today)
            except RegistryError as e:
                failed += 1
                results.append(
                    BatchItemFailure(**correlation, error=e.message, error_kind=e.kind)
                )
                logger.warning(f"Batch item {sequence} ({item.act_number}) failed: {e.message}")
            except Exception as e:
                failed += 1
                results.append(
                    BatchItemFailure(**correlation, error=str(e), error_kind="unexpected")
                )
                logger.exception(f"Batch item {sequence} ({item.act_number}) failed unexpectedly")
            else:
                succeeded += 1
                results.append(BatchItemSuccess(**correlation, act_id=act.id))

        elapsed_ms = int((time.perf_counter() - started) * 1000)

        decisive_dates = await resolve_decisive_dates(
            variant, items, self.coordinator.persons
        )
        statistics = compute_statistics(
            variant, items, decisive_dates, self.late_after_days
        )

        if failed == 0:
            message = f"All {succeeded} acts were created successfully"
        else:
            message = f"{succeeded} of {len(items)} acts created, {failed} failed"

        logger.info(
            f"{variant.value.capitalize()} batch by {request.submitted_by}: "
            f"{succeeded} succeeded, {failed} failed in {elapsed_ms}ms"
        )

        return BatchResult(
            variant=variant,
            success=failed == 0,
            message=message,
            submitted_by=request.submitted_by,
            total=len(items),
            processed=len(results),
            succeeded=succeeded,
            failed=failed,
            elapsed_ms=elapsed_ms,
            results=results,
            statistics=statistics,
        )
