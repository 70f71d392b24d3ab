"""
Civil act API routes.

Birth and death acts expose the same surface; one router is built per
variant. Batch creation always answers 200 with per-item outcomes; only a
structurally invalid batch is rejected up front.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Query, Response

from etatcivil.api.deps import Coordinator, OfficerUser, Processor, User, Validator
from etatcivil.config import settings
from etatcivil.db.orm import ActVariant, Sex
from etatcivil.registry import ActSearchCriteria, PageRequest, SortDirection
from etatcivil.registry.schemas import (
    ActCreate,
    ActRegistryStatistics,
    ActResponse,
    ActSummary,
    ActUpdate,
    BatchRequest,
    BatchResult,
    BatchValidationReport,
    BatchValidationRequest,
    Page,
)


def build_act_router(variant: ActVariant) -> APIRouter:
    """Create the router for one act variant."""
    router = APIRouter()

    @router.post("", response_model=ActResponse, status_code=201)
    async def create_act(
        request: ActCreate,
        coordinator: Coordinator,
        user: OfficerUser,
    ):
        """Register a new act."""
        act = await coordinator.create(variant, request)
        return ActResponse.from_act(act)

    @router.get("", response_model=Page[ActSummary])
    async def search_acts(
        coordinator: Coordinator,
        user: User,
        act_number: Optional[str] = Query(None, description="Act number fragment"),
        surname: Optional[str] = Query(None, description="Subject surname fragment"),
        patronymic: Optional[str] = Query(None),
        given_name: Optional[str] = Query(None),
        sex: Optional[Sex] = Query(None),
        officer: Optional[str] = Query(None, description="Officer name fragment"),
        death_place: Optional[str] = Query(None, description="Place of death fragment"),
        commune_id: Optional[int] = Query(None, gt=0),
        entity_id: Optional[int] = Query(None, gt=0),
        province_id: Optional[int] = Query(None, gt=0),
        decisive_date_from: Optional[date] = Query(None),
        decisive_date_to: Optional[date] = Query(None),
        registration_date_from: Optional[date] = Query(None),
        registration_date_to: Optional[date] = Query(None),
        page: int = Query(0, ge=0, description="Page number (0-based)"),
        size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
        sort_by: Optional[str] = Query(None, description="Sort field"),
        direction: Optional[SortDirection] = Query(None),
    ):
        """Search acts with any combination of criteria."""
        criteria = ActSearchCriteria(
            act_number=act_number,
            surname=surname,
            patronymic=patronymic,
            given_name=given_name,
            sex=sex,
            officer=officer,
            death_place=death_place,
            commune_id=commune_id,
            entity_id=entity_id,
            province_id=province_id,
            decisive_date_from=decisive_date_from,
            decisive_date_to=decisive_date_to,
            registration_date_from=registration_date_from,
            registration_date_to=registration_date_to,
        )
        results = await coordinator.search(
            variant,
            criteria,
            PageRequest(page=page, size=size, sort_by=sort_by, direction=direction),
        )
        return results.map(ActSummary.from_act)

    @router.get("/count")
    async def count_acts(
        coordinator: Coordinator,
        user: User,
        commune_id: Optional[int] = Query(None, gt=0),
        entity_id: Optional[int] = Query(None, gt=0),
        province_id: Optional[int] = Query(None, gt=0),
    ) -> dict:
        """Count acts in a commune, territorial entity or province."""
        count = await coordinator.count(
            variant,
            commune_id=commune_id,
            entity_id=entity_id,
            province_id=province_id,
        )
        return {"variant": variant.value, "count": count}

    @router.get("/statistics", response_model=ActRegistryStatistics)
    async def act_statistics(coordinator: Coordinator, user: User):
        """Registry-wide aggregates over every act of this kind."""
        return await coordinator.statistics(variant)

    @router.get("/by-number/{act_number}", response_model=ActResponse)
    async def get_act_by_number(act_number: str, coordinator: Coordinator, user: User):
        """Get act by its number."""
        return ActResponse.from_act(await coordinator.get_by_number(variant, act_number))

    @router.get("/by-subject/{person_id}", response_model=ActResponse)
    async def get_act_by_subject(person_id: int, coordinator: Coordinator, user: User):
        """Get the act of a person."""
        return ActResponse.from_act(await coordinator.get_by_subject(variant, person_id))

    @router.get("/check/number/{act_number}")
    async def check_act_number(act_number: str, coordinator: Coordinator, user: User) -> dict:
        """Tell whether an act number is already taken."""
        return {
            "act_number": act_number.strip().upper(),
            "exists": await coordinator.number_exists(variant, act_number),
        }

    @router.get("/check/subject/{person_id}")
    async def check_subject(person_id: int, coordinator: Coordinator, user: User) -> dict:
        """Tell whether a person already has an act of this kind."""
        return {
            "person_id": person_id,
            "exists": await coordinator.subject_has_act(variant, person_id),
        }

    @router.post("/batch", response_model=BatchResult)
    async def create_batch(
        request: BatchRequest,
        processor: Processor,
        user: OfficerUser,
    ):
        """Register several acts; failures are reported per item."""
        return await processor.process(variant, request)

    @router.post("/batch/validation", response_model=BatchValidationReport)
    async def validate_batch(
        request: BatchValidationRequest,
        validator: Validator,
        user: OfficerUser,
    ):
        """Check a batch without writing anything."""
        return await validator.validate(variant, request.items)

    @router.get("/{act_id}", response_model=ActResponse)
    async def get_act(act_id: int, coordinator: Coordinator, user: User):
        """Get act by ID."""
        return ActResponse.from_act(await coordinator.get(variant, act_id))

    @router.patch("/{act_id}", response_model=ActResponse)
    async def update_act(
        act_id: int,
        request: ActUpdate,
        coordinator: Coordinator,
        user: OfficerUser,
    ):
        """Partially update an act."""
        act = await coordinator.update(variant, act_id, request)
        return ActResponse.from_act(act)

    @router.delete("/{act_id}", status_code=204)
    async def delete_act(act_id: int, coordinator: Coordinator, user: OfficerUser):
        """Delete an act."""
        await coordinator.delete(variant, act_id)
        return Response(status_code=204)

    return router


death_acts_router = build_act_router(ActVariant.DEATH)
birth_acts_router = build_act_router(ActVariant.BIRTH)
