"""
Order API routes.

Thin adapter over OrderService: parse the request, call the service,
return its view. Domain errors are mapped to HTTP by the registered
exception handlers.
"""
from datetime import date
from decimal import Decimal
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request, status

from orderdesk.domain.order import OrderStatus
from orderdesk.repositories.base import PageRequest
from orderdesk.schemas.order import (
    CancelOrderRequest,
    CreateOrderRequest,
    OrderPage,
    OrderResponse,
    OrderStatistics,
    UpdateOrderStatusRequest,
)
from orderdesk.services.order_service import OrderService

router = APIRouter(tags=["orders"])


def get_order_service(request: Request) -> OrderService:
    """Dependency returning the service built in the app lifespan."""
    return request.app.state.order_service


def get_actor_id(
    x_user_id: Annotated[Optional[str], Header(alias="X-User-Id")] = None,
) -> str:
    return x_user_id or "anonymous"


def get_page_request(
    page: int = Query(0, ge=0, description="Zero-based page number"),
    size: int = Query(20, ge=1, le=100, description="Items per page"),
    direction: str = Query("desc", pattern="^(asc|desc)$", description="Sort by creation time"),
) -> PageRequest:
    return PageRequest(page=page, size=size, descending=direction == "desc")


ServiceDep = Annotated[OrderService, Depends(get_order_service)]
ActorDep = Annotated[str, Depends(get_actor_id)]
PageDep = Annotated[PageRequest, Depends(get_page_request)]


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    body: CreateOrderRequest,
    service: ServiceDep,
    actor_id: ActorDep,
) -> OrderResponse:
    """
    Create an order.

    Returns 201 even when storage is unavailable; the body then carries
    ``degraded: true`` and no ``orderId``.
    """
    return await service.create_order(body, actor_id)


@router.get("/orders", response_model=OrderPage)
async def list_orders(service: ServiceDep, page: PageDep) -> OrderPage:
    return await service.get_all_orders(page)


@router.get("/orders/search", response_model=OrderPage)
async def search_orders(
    service: ServiceDep,
    page: PageDep,
    customer_id: Annotated[Optional[str], Query(alias="customerId")] = None,
    status_filter: Annotated[Optional[str], Query(alias="status")] = None,
    start_date: Annotated[Optional[date], Query(alias="startDate")] = None,
    end_date: Annotated[Optional[date], Query(alias="endDate")] = None,
    min_amount: Annotated[Optional[Decimal], Query(alias="minAmount", ge=0)] = None,
    max_amount: Annotated[Optional[Decimal], Query(alias="maxAmount", ge=0)] = None,
) -> OrderPage:
    return await service.search_orders(
        page,
        customer_id=customer_id,
        status=OrderStatus.from_string(status_filter) if status_filter else None,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
    )


@router.get("/orders/customer/{customer_id}", response_model=OrderPage)
async def list_customer_orders(
    customer_id: str,
    service: ServiceDep,
    page: PageDep,
    status_filter: Annotated[Optional[str], Query(alias="status")] = None,
) -> OrderPage:
    order_status = OrderStatus.from_string(status_filter) if status_filter else None
    return await service.get_orders_by_customer(customer_id, page, order_status)


@router.get("/orders/status/{order_status}", response_model=OrderPage)
async def list_orders_by_status(
    order_status: str,
    service: ServiceDep,
    page: PageDep,
) -> OrderPage:
    return await service.get_orders_by_status(OrderStatus.from_string(order_status), page)


@router.get("/orders/statistics/{customer_id}", response_model=OrderStatistics)
async def get_order_statistics(customer_id: str, service: ServiceDep) -> OrderStatistics:
    return await service.get_order_statistics(customer_id)


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(order_id: UUID, service: ServiceDep) -> OrderResponse:
    return await service.get_order_by_id(order_id)


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: UUID,
    body: UpdateOrderStatusRequest,
    service: ServiceDep,
    actor_id: ActorDep,
) -> OrderResponse:
    return await service.update_order_status(order_id, body, actor_id)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: UUID,
    service: ServiceDep,
    actor_id: ActorDep,
    body: Optional[CancelOrderRequest] = None,
) -> OrderResponse:
    reason = body.reason if body else None
    return await service.cancel_order(order_id, reason, actor_id)


@router.get("/customers/{customer_id}/orders/{order_id}", response_model=OrderResponse)
async def get_customer_order(
    customer_id: str,
    order_id: UUID,
    service: ServiceDep,
) -> OrderResponse:
    """Fetch an order only if it belongs to the customer; otherwise 404."""
    return await service.get_order_by_id_for_customer(order_id, customer_id)
