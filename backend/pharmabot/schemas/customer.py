from typing import Optional

from pydantic import BaseModel, ConfigDict


class Customer(BaseModel):
    """Customer profile as the backend returns it."""
    model_config = ConfigDict(extra="allow")

    phone_number: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    pincode: Optional[str] = None
    landmark: Optional[str] = None

    @property
    def has_delivery_address(self) -> bool:
        return bool(self.pincode and self.address)
