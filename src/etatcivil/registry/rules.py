"""
Consistency rules for civil acts.

Pure functions shared by the coordinator (which raises on the first
violation) and the dry-run batch validator (which only collects).
"""

import re
from datetime import date, timedelta
from typing import Optional

from etatcivil.db.orm import ActVariant
from etatcivil.errors import InvalidActError

# Upper-case letters, digits, slash and dash once normalized
ACT_NUMBER_PATTERN = re.compile(r"^[A-Z0-9/-]+$")


def normalize_act_number(value: str) -> str:
    """Trim and upper-case an act number before any comparison or storage."""
    return value.strip().upper()


def has_text(value: Optional[str]) -> bool:
    """True when a free-text field carries something other than blanks."""
    return value is not None and value.strip() != ""


def clean_text(value: Optional[str]) -> Optional[str]:
    """Strip a free-text field, mapping blank to None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def check_officer(officer: Optional[str]) -> str:
    """
    Trimmed name of the registering officer.

    Raises:
        InvalidActError: If the name is missing or blank
    """
    if not has_text(officer):
        raise InvalidActError("The registering officer is required", field="officer")
    return officer.strip()


def has_witnesses(witness1: Optional[str], witness2: Optional[str]) -> bool:
    return has_text(witness1) or has_text(witness2)


def add_years(value: date, years: int) -> date:
    """
    Shift a date by whole calendar years.

    February 29 falls back to February 28 in non-leap target years.
    """
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        return value.replace(year=value.year + years, day=28)


def age_in_years(birth_date: date, on: date) -> int:
    """Completed years between two dates."""
    years = on.year - birth_date.year
    if (on.month, on.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def is_late_registration(
    registration_date: date,
    decisive_date: Optional[date],
    late_after_days: int = 30,
) -> bool:
    """
    Registration more than ``late_after_days`` after the decisive date.

    Acts without a known decisive date are never late.
    """
    if decisive_date is None:
        return False
    return registration_date > decisive_date + timedelta(days=late_after_days)


def check_act_number(
    act_number: str,
    variant: ActVariant,
    min_length: int = 5,
) -> str:
    """
    Normalize and validate an act number.

    The minimum length applies to death acts only; birth acts keep the
    pattern check without a length floor.

    Returns:
        The normalized act number

    Raises:
        InvalidActError: If the number is empty, malformed or too short
    """
    normalized = normalize_act_number(act_number)
    if not normalized:
        raise InvalidActError("Act number must not be empty", field="act_number")

    if not ACT_NUMBER_PATTERN.match(normalized):
        raise InvalidActError(
            "Act number format is invalid: use only upper-case letters, "
            "digits, dashes and slashes",
            field="act_number",
        )

    if variant == ActVariant.DEATH and len(normalized) < min_length:
        raise InvalidActError(
            f"Act number must contain at least {min_length} characters",
            field="act_number",
        )

    return normalized


def check_dates(
    registration_date: date,
    decisive_date: Optional[date],
    today: date,
) -> None:
    """
    Check date coherence of an act.

    Raises:
        InvalidActError: If a date lies in the future or the registration
            precedes the decisive date
    """
    if decisive_date is not None and decisive_date > today:
        raise InvalidActError(
            "The decisive date cannot be in the future", field="decisive_date"
        )

    if registration_date > today:
        raise InvalidActError(
            "The registration date cannot be in the future",
            field="registration_date",
        )

    if decisive_date is not None and registration_date < decisive_date:
        raise InvalidActError(
            "The registration date cannot be earlier than the decisive date",
            field="registration_date",
        )


def check_age_at_death(
    birth_date: Optional[date],
    death_date: date,
    max_years: int = 120,
) -> None:
    """
    Check that the implied age at death is within [0, max_years].

    Death exactly ``max_years`` after birth is accepted, one day more is not.
    Unknown birth dates are not checked.
    """
    if birth_date is None:
        return

    if death_date < birth_date:
        raise InvalidActError(
            "The death date cannot be earlier than the birth date",
            field="death_date",
        )

    if death_date > add_years(birth_date, max_years):
        raise InvalidActError(
            f"Implausible age at death (more than {max_years} years)",
            field="death_date",
        )
