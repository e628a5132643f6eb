from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OrderLine(BaseModel):
    medicine_id: str
    quantity: int = Field(default=1, ge=1)
    prescription_file: Optional[str] = None

    @field_validator("medicine_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if isinstance(v, int) else v


class QuickOrderRequest(BaseModel):
    """Body for POST /api/orders/quick-create/ (the backend calls the lines `medicines`)."""
    customer_phone: str
    pharmacy_id: str
    medicines: List[OrderLine]
    delivery_address: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("pharmacy_id", mode="before")
    @classmethod
    def coerce_pharmacy_id(cls, v):
        return str(v) if isinstance(v, int) else v


class OrderPharmacy(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if isinstance(v, int) else v


class Order(BaseModel):
    """Order as returned by the backend. Only `status` changes after creation."""
    model_config = ConfigDict(extra="allow")

    order_id: Optional[str] = None
    pharmacy_id: Optional[str] = None
    pharmacy: Optional[OrderPharmacy] = None
    customer_phone: Optional[str] = None
    total_amount: Optional[Decimal] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("order_id", "pharmacy_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return str(v) if isinstance(v, int) else v

    @field_validator("pharmacy", mode="before")
    @classmethod
    def pharmacy_object(cls, v):
        # Some endpoints return the pharmacy id instead of a nested object
        if isinstance(v, (int, str)):
            return {"id": v}
        return v

    @field_validator("total_amount", "created_at", mode="before")
    @classmethod
    def blank_as_none(cls, v):
        return None if v == "" else v

    @property
    def pharmacy_name(self) -> Optional[str]:
        return self.pharmacy.name if self.pharmacy else None
