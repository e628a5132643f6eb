"""Customer profile adapter."""
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from pharmabot.core.exceptions import DecodeError, HttpError
from pharmabot.schemas.customer import Customer
from pharmabot.services.api_client import ApiClient

logger = logging.getLogger(__name__)


class CustomerService:
    def __init__(self, api: ApiClient):
        self.api = api

    async def get_or_create(self, phone_number: str, updates: Optional[Dict[str, Any]] = None) -> Customer:
        """
        Fetch the profile, applying `updates` when given. Creates it on 404.

        Args:
            phone_number: Customer id on the backend
            updates: Profile fields to write (name, address, city, pincode, landmark)
        """
        endpoint = f"/api/customers/{phone_number}/"
        try:
            data = await self.api.request(endpoint)
            if updates:
                logger.info(f"[Customer] Updating profile for {phone_number}: {sorted(updates)}")
                data = await self.api.request(endpoint, "PATCH", body=updates)
        except HttpError as e:
            if not e.is_not_found:
                raise
            logger.info(f"[Customer] Creating profile for {phone_number}")
            data = await self.api.request(endpoint, "POST", body={"phone_number": phone_number, **(updates or {})})

        try:
            return Customer.model_validate(data or {"phone_number": phone_number})
        except ValidationError as e:
            raise DecodeError(f"Malformed customer record for {phone_number}") from e
