from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from ..api.dependencies import get_store
from ..config import settings
from ..schemas.schemas import TenantJourneyRead
from ..services.journey import JourneyFilters, assemble_journey
from ..services.journey_loader import build_scoring_context, load_journey_sources
from ..services.scoring import default_policy
from ..services.store import RowStore
from ..services.timeline import build_timeline, category_counts

router = APIRouter(prefix="/tenants", tags=["journey"])


@router.get("/{tenant_id}/journey", response_model=TenantJourneyRead)
def get_tenant_journey(
    tenant_id: int,
    categories: Optional[List[str]] = Query(default=None),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    as_of: Optional[date] = None,
    store: RowStore = Depends(get_store),
) -> TenantJourneyRead:
    sources = load_journey_sources(store, tenant_id)
    journey = assemble_journey(
        sources,
        build_scoring_context(sources.tenant, as_of),
        policy=default_policy(settings.scoring_overrides),
        filters=JourneyFilters(categories=categories, date_from=date_from, date_to=date_to, search=search),
        offset=offset,
        limit=limit or settings.journey_page_size,
    )
    return TenantJourneyRead.model_validate(journey)


@router.get("/{tenant_id}/journey/category-counts", response_model=Dict[str, int])
def get_tenant_journey_category_counts(tenant_id: int, store: RowStore = Depends(get_store)) -> Dict[str, int]:
    return category_counts(build_timeline(load_journey_sources(store, tenant_id)))
