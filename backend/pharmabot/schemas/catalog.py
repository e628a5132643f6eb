from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

RX_PRESCRIPTION_TYPE = "RX"


class CatalogRecord(BaseModel):
    """Backend records: ids may arrive as ints or strings; we keep strings."""
    model_config = ConfigDict(extra="ignore")

    id: str

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class Category(CatalogRecord):
    name: Optional[str] = None
    description: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or "Unnamed Category"


class Medicine(CatalogRecord):
    name: str
    description: Optional[str] = None
    price: Optional[Decimal] = None
    mrp: Optional[Decimal] = None
    prescription_type: Optional[str] = None
    stock_quantity: Optional[int] = None

    @field_validator("price", "mrp", mode="before")
    @classmethod
    def blank_price(cls, v):
        return None if v == "" else v

    @property
    def unit_price(self) -> Decimal:
        """Selling price; MRP when the backend doesn't send a price."""
        if self.price is not None:
            return self.price
        if self.mrp is not None:
            return self.mrp
        return Decimal("0")

    @property
    def requires_prescription(self) -> bool:
        return (self.prescription_type or "").upper() == RX_PRESCRIPTION_TYPE

    @property
    def in_stock(self) -> bool:
        return bool(self.stock_quantity and self.stock_quantity > 0)


class Pharmacy(CatalogRecord):
    name: str = "Pharmacy"
    address: Optional[str] = None
    phone: Optional[str] = None
    is_24x7: bool = False
