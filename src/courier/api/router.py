"""FastAPI router for Courier operator endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from courier.models import ALL_EVENT_TYPES, EVENT_CATALOG_VERSION, DeliveryStatus
from courier.service import CourierService
from courier.webhooks import RetryRunSummary

from .auth import require_operator
from .schemas import (
    DeliveryDetailResponse,
    DeliveryListResponse,
    DeliveryResponse,
    EventCatalogResponse,
    HealthResponse,
    SubscriberStatusResponse,
)

router = APIRouter()

# Service instance (set by app lifespan)
_service: CourierService | None = None


def set_service(service: CourierService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> CourierService:
    """Dependency to get the CourierService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[CourierService, Depends(get_service)]
OperatorDep = Depends(require_operator)


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health."""
    from courier import __version__

    storage_connected = _service is not None
    return HealthResponse(
        status="healthy" if storage_connected else "unhealthy",
        version=__version__,
        storage_connected=storage_connected,
    )


@router.get("/events", response_model=EventCatalogResponse, tags=["system"])
async def list_events() -> EventCatalogResponse:
    """List the event names subscribers can register for."""
    return EventCatalogResponse(version=EVENT_CATALOG_VERSION, events=list(ALL_EVENT_TYPES))


@router.post(
    "/retries/run",
    response_model=RetryRunSummary,
    tags=["deliveries"],
    dependencies=[OperatorDep],
)
async def run_retries(service: ServiceDep) -> RetryRunSummary:
    """Run one retry scan.

    Intended as the target of a cron job. Safe to call while another
    scan is running.
    """
    return await service.process_retries()


@router.get(
    "/deliveries",
    response_model=DeliveryListResponse,
    tags=["deliveries"],
    dependencies=[OperatorDep],
)
async def list_deliveries(
    service: ServiceDep,
    subscriber_id: str | None = None,
    status_filter: Annotated[DeliveryStatus | None, Query(alias="status")] = None,
    event: str | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> DeliveryListResponse:
    """Delivery log, newest first."""
    records = await service.list_deliveries(
        subscriber_id=subscriber_id, status=status_filter, event=event, limit=limit
    )
    deliveries = [DeliveryResponse.from_record(r) for r in records]
    return DeliveryListResponse(deliveries=deliveries, count=len(deliveries))


@router.get(
    "/deliveries/{delivery_id}",
    response_model=DeliveryDetailResponse,
    tags=["deliveries"],
    dependencies=[OperatorDep],
)
async def get_delivery(delivery_id: str, service: ServiceDep) -> DeliveryDetailResponse:
    """A delivery record and every attempt made for it."""
    record, attempts = await service.get_delivery(delivery_id)
    return DeliveryDetailResponse(delivery=DeliveryResponse.from_record(record), attempts=attempts)


@router.get(
    "/subscribers/{subscriber_id}",
    response_model=SubscriberStatusResponse,
    tags=["subscribers"],
    dependencies=[OperatorDep],
)
async def get_subscriber(subscriber_id: str, service: ServiceDep) -> SubscriberStatusResponse:
    """Subscriber health state."""
    subscriber = await service.get_subscriber(subscriber_id)
    return SubscriberStatusResponse.from_subscriber(subscriber)


@router.post(
    "/subscribers/{subscriber_id}/resume",
    response_model=SubscriberStatusResponse,
    tags=["subscribers"],
    dependencies=[OperatorDep],
)
async def resume_subscriber(subscriber_id: str, service: ServiceDep) -> SubscriberStatusResponse:
    """Clear a subscriber's pause and reset its failure counter."""
    subscriber = await service.resume_subscriber(subscriber_id)
    return SubscriberStatusResponse.from_subscriber(subscriber)
