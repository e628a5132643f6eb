"""
Cart/checkout logic. Pure functions: carts go in, new carts come out.

A cart is an ordered list of CartItem, unique by medicine_id.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from pharmabot.schemas.catalog import Medicine
from pharmabot.schemas.order import OrderLine, QuickOrderRequest
from pharmabot.schemas.session import CartItem, DeliveryAddress

CENTS = Decimal("0.01")


def add_to_cart(cart: List[CartItem], medicine: Medicine) -> List[CartItem]:
    """Increment the line for `medicine` if present, else append it with quantity 1."""
    updated = [item.model_copy() for item in cart]
    for item in updated:
        if item.medicine_id == medicine.id:
            item.quantity += 1
            return updated

    updated.append(CartItem(
        medicine_id=medicine.id,
        name=medicine.name,
        unit_price=medicine.unit_price,
        quantity=1,
        requires_prescription=medicine.requires_prescription,
    ))
    return updated


def cart_total(cart: List[CartItem]) -> Decimal:
    return sum((item.line_total for item in cart), Decimal("0")).quantize(CENTS, rounding=ROUND_HALF_UP)


def format_amount(amount: Optional[Decimal]) -> str:
    return str(Decimal(amount or 0).quantize(CENTS, rounding=ROUND_HALF_UP))


def cart_requires_prescription(cart: List[CartItem]) -> bool:
    return any(item.requires_prescription for item in cart)


def missing_prescriptions(cart: List[CartItem]) -> List[CartItem]:
    """Rx lines that have no prescription attached yet."""
    return [item for item in cart if item.requires_prescription and not item.prescription_file]


def attach_prescription(cart: List[CartItem], prescription_file: str) -> List[CartItem]:
    """Attach the stored prescription reference to every Rx line."""
    return [
        item.model_copy(update={"prescription_file": prescription_file}) if item.requires_prescription
        else item.model_copy()
        for item in cart
    ]


def build_order_items(cart: List[CartItem]) -> List[OrderLine]:
    return [
        OrderLine(
            medicine_id=item.medicine_id,
            quantity=item.quantity,
            prescription_file=item.prescription_file if item.requires_prescription else None,
        )
        for item in cart
    ]


def build_order_payload(
    phone_number: str,
    items: List[OrderLine],
    address: DeliveryAddress,
    pharmacy_id: str,
) -> QuickOrderRequest:
    return QuickOrderRequest(
        customer_phone=phone_number,
        pharmacy_id=pharmacy_id,
        medicines=items,
        delivery_address={
            "name": address.name,
            "address": address.address,
            "city": address.city,
            "pincode": address.pincode,
            "landmark": address.landmark or "",
        },
    )
