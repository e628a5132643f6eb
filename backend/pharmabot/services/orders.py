"""
Order adapter: quick-create and order history.

Quick-create is NOT retried: a lost response after the backend committed
would otherwise create a second order.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import ValidationError

from pharmabot.agent.cart import build_order_payload
from pharmabot.core.exceptions import DecodeError, HttpError, NoFulfillmentError
from pharmabot.schemas.catalog import Pharmacy
from pharmabot.schemas.order import Order, OrderLine, QuickOrderRequest
from pharmabot.schemas.session import DeliveryAddress
from pharmabot.services._records import parse_records
from pharmabot.services.api_client import ApiClient, extract_list
from pharmabot.services.pharmacies import PharmacyService

logger = logging.getLogger(__name__)

RECENT_ORDERS_LIMIT = 5


def local_order_id() -> str:
    return f"ORD-{uuid.uuid4().hex[:8].upper()}"


class OrderService:
    def __init__(self, api: ApiClient, pharmacies: PharmacyService):
        self.api = api
        self.pharmacies = pharmacies

    async def resolve_pharmacy(self, address: DeliveryAddress) -> Pharmacy:
        """First nearby pharmacy for the address (no ranking). Raises NoFulfillmentError."""
        candidates = await self.pharmacies.nearby(city=address.city, pincode=address.pincode)
        if not candidates:
            raise NoFulfillmentError(city=address.city, pincode=address.pincode)
        return candidates[0]

    async def create_quick_order(
        self,
        phone_number: str,
        items: List[OrderLine],
        address: DeliveryAddress,
        fallback_total: Optional[Decimal] = None,
    ) -> Order:
        """Resolve the fulfilling pharmacy, then create the order in one non-retried call."""
        pharmacy = await self.resolve_pharmacy(address)
        request = build_order_payload(phone_number, items, address, pharmacy.id)
        return await self.submit(request, fallback_total=fallback_total)

    async def submit(self, request: QuickOrderRequest, fallback_total: Optional[Decimal] = None) -> Order:
        logger.info(
            f"[Order] Creating order for {request.customer_phone}: "
            f"{len(request.medicines)} line(s) at pharmacy {request.pharmacy_id}"
        )
        response = await self.api.request(
            "/api/orders/quick-create/",
            "POST",
            body=request.model_dump(mode="json"),
            retry=False,
        )
        try:
            order = Order.model_validate(response or {})
        except ValidationError as e:
            raise DecodeError("Malformed quick-create response") from e

        updates = {}
        if not order.order_id:
            updates["order_id"] = local_order_id()
            logger.warning(f"[Order] Backend returned no order_id, using {updates['order_id']}")
        if order.total_amount is None and fallback_total is not None:
            updates["total_amount"] = fallback_total
        if not order.pharmacy_id:
            updates["pharmacy_id"] = request.pharmacy_id
        if not order.customer_phone:
            updates["customer_phone"] = request.customer_phone
        if order.created_at is None:
            updates["created_at"] = datetime.now(timezone.utc)
        return order.model_copy(update=updates) if updates else order

    async def list_for_customer(self, phone_number: str, limit: int = RECENT_ORDERS_LIMIT) -> List[Order]:
        """Most recent first (by created_at), capped at `limit`. Unknown customers have none."""
        try:
            response = await self.api.request(f"/api/orders/customer/{phone_number}/")
        except HttpError as e:
            if e.is_not_found:
                logger.info(f"[Order] No order history for {phone_number}")
                return []
            raise
        orders = parse_records(Order, extract_list(response, "orders"), "order")
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        orders.sort(key=lambda o: _aware(o.created_at) or oldest, reverse=True)
        return orders[:limit]


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
