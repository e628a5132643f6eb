"""Catalog adapter: categories, medicines, search."""
import logging
from typing import List, Optional

from pydantic import ValidationError

from pharmabot.core.exceptions import DecodeError, HttpError
from pharmabot.schemas.catalog import Category, Medicine
from pharmabot.services._records import parse_records
from pharmabot.services.api_client import ApiClient, extract_list

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 10


class CatalogService:
    def __init__(self, api: ApiClient):
        self.api = api

    async def list_categories(self) -> List[Category]:
        response = await self.api.request("/api/categories/")
        return parse_records(Category, extract_list(response, "categories"), "category")

    async def medicines_by_category(self, category_id: str) -> List[Medicine]:
        response = await self.api.request("/api/medicines/", params={"category": category_id})
        return parse_records(Medicine, extract_list(response, "medicines"), "medicine")

    async def search(self, query: str, limit: int = SEARCH_LIMIT) -> List[Medicine]:
        response = await self.api.request("/api/medicines/search/", params={"q": query, "limit": limit})
        return parse_records(Medicine, extract_list(response, "search results"), "medicine")

    async def get_medicine(self, medicine_id: str) -> Optional[Medicine]:
        """Medicine by id. None when the backend doesn't know it."""
        try:
            response = await self.api.request(f"/api/medicines/{medicine_id}/")
        except HttpError as e:
            if e.is_not_found:
                logger.info(f"[Catalog] Medicine {medicine_id} not found")
                return None
            raise
        try:
            return Medicine.model_validate(response)
        except ValidationError as e:
            raise DecodeError(f"Malformed medicine {medicine_id}") from e
