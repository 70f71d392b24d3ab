"""
Registry-wide act statistics.

Repositories hand over one flat row per stored act; the aggregation
itself happens here, so the database and the in-memory test store share
it. Only the last twelve months appear in the monthly breakdown.
"""

from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from etatcivil.db.orm import ActVariant, Sex
from etatcivil.registry.rules import (
    add_years,
    age_in_years,
    has_text,
    is_late_registration,
)
from etatcivil.registry.schemas import ActRegistryStatistics, MonthlyCount


@dataclass
class ActFacts:
    """The fields of one act (and its subject) that statistics look at."""

    registration_date: date
    decisive_date: Optional[date]
    birth_date: Optional[date]
    sex: Sex
    commune: str
    officer: str
    cause_of_death: Optional[str] = None
    physician: Optional[str] = None


def summarize_acts(
    variant: ActVariant,
    facts: Iterable[ActFacts],
    today: date,
    late_after_days: int = 30,
) -> ActRegistryStatistics:
    """Aggregate stored acts of one variant as of ``today``."""
    facts = list(facts)
    month_start = today.replace(day=1)
    window_start = add_years(today, -1)

    by_commune: Counter = Counter()
    by_officer: Counter = Counter()
    by_month: Counter = Counter()
    by_sex: Counter = Counter()
    by_cause: Counter = Counter()
    ages: list[int] = []
    registered_today = 0
    registered_this_month = 0
    late = 0
    with_cause = 0
    with_physician = 0

    for fact in facts:
        by_commune[fact.commune] += 1
        by_officer[fact.officer] += 1
        by_sex[Sex(fact.sex).value] += 1

        if fact.registration_date == today:
            registered_today += 1
        if month_start <= fact.registration_date <= today:
            registered_this_month += 1
        if window_start < fact.registration_date <= today:
            by_month[(fact.registration_date.year, fact.registration_date.month)] += 1
        if is_late_registration(fact.registration_date, fact.decisive_date, late_after_days):
            late += 1

        if variant != ActVariant.DEATH:
            continue
        if has_text(fact.cause_of_death):
            with_cause += 1
            by_cause[fact.cause_of_death.strip()] += 1
        if has_text(fact.physician):
            with_physician += 1
        if fact.birth_date is not None and fact.decisive_date is not None:
            ages.append(age_in_years(fact.birth_date, fact.decisive_date))

    stats = ActRegistryStatistics(
        variant=variant,
        total=len(facts),
        registered_today=registered_today,
        registered_this_month=registered_this_month,
        late_registrations=late,
        by_commune=dict(by_commune.most_common()),
        by_officer=dict(by_officer.most_common()),
        by_month=[
            MonthlyCount(year=year, month=month, count=count)
            for (year, month), count in sorted(by_month.items())
        ],
        by_sex=dict(by_sex),
    )
    if variant == ActVariant.DEATH:
        stats.by_cause = dict(by_cause.most_common())
        stats.average_age_at_death = round(sum(ages) / len(ages), 1) if ages else None
        stats.with_cause_of_death = with_cause
        stats.without_cause_of_death = len(facts) - with_cause
        stats.with_physician = with_physician
        stats.without_physician = len(facts) - with_physician
    return stats
