"""Nearby-pharmacy lookup."""
from typing import List, Optional

from pharmabot.schemas.catalog import Pharmacy
from pharmabot.services._records import parse_records
from pharmabot.services.api_client import ApiClient, extract_list


class PharmacyService:
    def __init__(self, api: ApiClient):
        self.api = api

    async def nearby(
        self,
        city: Optional[str] = None,
        pincode: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> List[Pharmacy]:
        """Pharmacies serving a city / pincode / GPS position, in backend order."""
        params = {
            key: value
            for key, value in (("city", city), ("pincode", pincode), ("latitude", latitude), ("longitude", longitude))
            if value not in (None, "")
        }
        response = await self.api.request("/api/pharmacies/nearby/", params=params)
        return parse_records(Pharmacy, extract_list(response, "pharmacies"), "pharmacy")
