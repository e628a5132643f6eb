"""Session contracts: the per-user conversation record and what it carries.

Session.context_data is typed rather than an open dict, but stays lenient
(extra keys are kept) so records written by older bot versions still load.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from pharmabot.agent.conversation_state import CHECKOUT_STEPS, ConversationStep


def _as_str_id(value: Any) -> Any:
    return str(value) if isinstance(value, int) else value


class CartItem(BaseModel):
    """One cart line. Unique by medicine_id within a cart."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Legacy sessions stored `id` / `price`
    medicine_id: str = Field(validation_alias=AliasChoices("medicine_id", "id"))
    name: str
    unit_price: Decimal = Field(default=Decimal("0"), validation_alias=AliasChoices("unit_price", "price"))
    quantity: int = 1
    requires_prescription: bool = False
    prescription_file: Optional[str] = None

    @field_validator("medicine_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _as_str_id(v)

    @field_validator("unit_price", mode="before")
    @classmethod
    def default_price(cls, v):
        return Decimal("0") if v in (None, "") else v

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class DeliveryAddress(BaseModel):
    """Structured delivery address produced by the address parser."""
    name: str
    address_lines: List[str] = Field(default_factory=list)
    city: str = ""
    pincode: str = ""
    landmark: Optional[str] = None

    @property
    def address(self) -> str:
        """Single-line form stored on the customer profile."""
        return ", ".join(self.address_lines)

    def to_profile_fields(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "pincode": self.pincode,
            "landmark": self.landmark or "",
        }


class PendingPrescription(BaseModel):
    """A single medicine waiting for its prescription photo (not a cart checkout)."""
    medicine_id: str
    name: str
    unit_price: Decimal = Decimal("0")
    prescription_file: Optional[str] = None

    @field_validator("medicine_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _as_str_id(v)


class ContextData(BaseModel):
    model_config = ConfigDict(extra="allow")

    cart: List[CartItem] = Field(default_factory=list)
    current_category: Optional[str] = None
    search_query: Optional[str] = None
    delivery_address: Optional[DeliveryAddress] = None
    checkout_in_progress: bool = False
    customer_info: Dict[str, Any] = Field(default_factory=dict)
    awaiting_prescription: Optional[PendingPrescription] = None

    @field_validator("current_category", mode="before")
    @classmethod
    def coerce_category(cls, v):
        return _as_str_id(v)

    @field_validator("delivery_address", "awaiting_prescription", mode="before")
    @classmethod
    def empty_as_none(cls, v):
        # Legacy records use {} / false for "not set"
        return v or None

    def with_cart_only(self) -> "ContextData":
        """Fresh context that keeps the shopping cart and nothing else."""
        return ContextData(cart=[item.model_copy() for item in self.cart])


class Session(BaseModel):
    """Per-user conversation record."""
    phone_number: str
    current_step: ConversationStep = ConversationStep.START
    context_data: ContextData = Field(default_factory=ContextData)
    is_fallback: bool = Field(default=False, exclude=True)

    @field_validator("current_step", mode="before")
    @classmethod
    def unknown_step_to_start(cls, v):
        if isinstance(v, ConversationStep):
            return v
        try:
            return ConversationStep(v)
        except ValueError:
            return ConversationStep.START

    @field_validator("context_data", mode="before")
    @classmethod
    def null_context(cls, v):
        return v or {}

    def inconsistencies(self) -> List[str]:
        """
        Reasons why current_step does not fit context_data (empty list = consistent).

        Rules:
        - checkout steps need something to check out (cart lines or a pending medicine)
        - confirm/processing need the parsed address
        """
        problems: List[str] = []
        ctx = self.context_data
        step = self.current_step

        if step in CHECKOUT_STEPS and not ctx.cart and ctx.awaiting_prescription is None:
            problems.append(f"{step.value} with nothing to check out")
        if step in (ConversationStep.CONFIRM_DELIVERY_ADDRESS, ConversationStep.PROCESSING_PAYMENT) \
                and ctx.delivery_address is None:
            problems.append(f"{step.value} without delivery_address")
        return problems

    def to_backend(self) -> Dict[str, Any]:
        """Body for the backend session PATCH."""
        return {
            "current_step": self.current_step.value,
            "context_data": self.context_data.model_dump(mode="json", exclude_none=True),
        }
