import logging
from typing import Any, Iterable, List, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_records(model: Type[ModelT], items: Iterable[Any], resource: str) -> List[ModelT]:
    """Validate backend records one by one, skipping (and logging) malformed ones."""
    records: List[ModelT] = []
    for item in items:
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(f"[Records] Skipping malformed {resource} record: {e.error_count()} errors")
    return records
