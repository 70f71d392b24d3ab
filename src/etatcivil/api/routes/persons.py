"""
Person API routes.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Query, Response

from etatcivil.api.deps import AdminUser, OfficerUser, Persons, User
from etatcivil.config import settings
from etatcivil.db.orm import MaritalStatus, Sex, VitalStatus
from etatcivil.registry import PageRequest, PersonSearchCriteria, SortDirection
from etatcivil.registry.schemas import (
    MaritalStatusChange,
    Page,
    PersonBatchRequest,
    PersonBatchResult,
    PersonCreate,
    PersonResponse,
    PersonUpdate,
    VitalStatusChange,
)

router = APIRouter()


@router.post("", response_model=PersonResponse, status_code=201)
async def create_person(request: PersonCreate, persons: Persons, user: OfficerUser):
    """Register a new person."""
    return await persons.create(request)


@router.post("/batch", response_model=PersonBatchResult)
async def create_persons_batch(
    request: PersonBatchRequest,
    persons: Persons,
    user: OfficerUser,
):
    """Register several persons; failures are reported per person."""
    return await persons.create_batch(request.persons)


@router.get("", response_model=Page[PersonResponse])
async def search_persons(
    persons: Persons,
    user: User,
    surname: Optional[str] = Query(None, description="Surname fragment"),
    patronymic: Optional[str] = Query(None),
    given_name: Optional[str] = Query(None),
    birthplace: Optional[str] = Query(None),
    sex: Optional[Sex] = Query(None),
    vital_status: Optional[VitalStatus] = Query(None),
    marital_status: Optional[MaritalStatus] = Query(None),
    birth_date_from: Optional[date] = Query(None),
    birth_date_to: Optional[date] = Query(None),
    age_min: Optional[int] = Query(None, ge=0, le=150),
    age_max: Optional[int] = Query(None, ge=0, le=150),
    page: int = Query(0, ge=0, description="Page number (0-based)"),
    size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    sort_by: Optional[str] = Query(None, description="Sort field"),
    direction: Optional[SortDirection] = Query(None),
):
    """Search persons; an age range is turned into birth-date bounds."""
    criteria = PersonSearchCriteria(
        surname=surname,
        patronymic=patronymic,
        given_name=given_name,
        birthplace=birthplace,
        sex=sex,
        vital_status=vital_status,
        marital_status=marital_status,
        birth_date_from=birth_date_from,
        birth_date_to=birth_date_to,
        age_min=age_min,
        age_max=age_max,
    )
    results = await persons.search(
        criteria,
        PageRequest(page=page, size=size, sort_by=sort_by, direction=direction),
    )
    return results.map(PersonResponse.model_validate)


@router.get("/{person_id}", response_model=PersonResponse)
async def get_person(person_id: int, persons: Persons, user: User):
    """Get person by ID."""
    return await persons.get(person_id)


@router.get("/{person_id}/children", response_model=Page[PersonResponse])
async def get_children(
    person_id: int,
    persons: Persons,
    user: User,
    page: int = Query(0, ge=0),
    size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    """Children recorded for a person, youngest first."""
    results = await persons.children(person_id, PageRequest(page=page, size=size))
    return results.map(PersonResponse.model_validate)


@router.patch("/{person_id}", response_model=PersonResponse)
async def update_person(
    person_id: int,
    request: PersonUpdate,
    persons: Persons,
    user: OfficerUser,
):
    """Partially update a person."""
    return await persons.update(person_id, request)


@router.delete("/{person_id}", status_code=204)
async def delete_person(person_id: int, persons: Persons, user: OfficerUser):
    """Delete a person without children or acts."""
    await persons.delete(person_id)
    return Response(status_code=204)


@router.put("/{person_id}/vital-status", response_model=PersonResponse)
async def change_vital_status(
    person_id: int,
    request: VitalStatusChange,
    persons: Persons,
    user: AdminUser,
):
    """Administrative override of the vital status."""
    return await persons.change_vital_status(person_id, request.status)


@router.put("/{person_id}/marital-status", response_model=PersonResponse)
async def change_marital_status(
    person_id: int,
    request: MaritalStatusChange,
    persons: Persons,
    user: OfficerUser,
):
    """Change the marital status."""
    return await persons.change_marital_status(person_id, request.status)
