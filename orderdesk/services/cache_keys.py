"""
Cache key builders.

Each builder encodes every argument that affects the result, so distinct
queries never share a key.
"""
import json
from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from orderdesk.domain.order import OrderStatus
from orderdesk.repositories.base import PageRequest


def _encode(*parts: Any) -> str:
    # JSON keeps component boundaries unambiguous ("a:b" + "c" vs "a" + "b:c")
    return json.dumps(
        [part.value if isinstance(part, OrderStatus) else part for part in parts],
        default=str,
        separators=(",", ":"),
    )


def _page_parts(page: PageRequest) -> tuple[int, int, bool]:
    return page.page, page.size, page.descending


def order_key(order_id: UUID) -> str:
    return f"order:{order_id}"


def all_orders_key(page: PageRequest) -> str:
    return f"all:{_encode(*_page_parts(page))}"


def customer_orders_key(
    customer_id: str,
    page: PageRequest,
    status: Optional[OrderStatus] = None,
) -> str:
    return f"customer:{_encode(customer_id, status, *_page_parts(page))}"


def status_orders_key(status: OrderStatus, page: PageRequest) -> str:
    return f"status:{_encode(status, *_page_parts(page))}"


def search_orders_key(
    customer_id: Optional[str],
    status: Optional[OrderStatus],
    start_date: Optional[date],
    end_date: Optional[date],
    min_amount: Optional[Decimal],
    max_amount: Optional[Decimal],
    page: PageRequest,
) -> str:
    return "search:" + _encode(
        customer_id,
        status,
        start_date.isoformat() if start_date else None,
        end_date.isoformat() if end_date else None,
        str(min_amount) if min_amount is not None else None,
        str(max_amount) if max_amount is not None else None,
        *_page_parts(page),
    )


def statistics_key(customer_id: str) -> str:
    return f"stats:{_encode(customer_id)}"
