"""
Reply builders: turn domain data into outbound messages.

Kept apart from the engine so that transitions read as decisions and the
wording lives in one place.
"""
from typing import List, Optional

from pharmabot.agent.cart import cart_requires_prescription, cart_total, format_amount
from pharmabot.agent.conversation_state import Command
from pharmabot.schemas.catalog import Category, Medicine, Pharmacy
from pharmabot.schemas.messages import (
    MAX_LIST_ROWS,
    Button,
    ButtonMessage,
    ListMessage,
    ListRow,
    ListSection,
    TextMessage,
)
from pharmabot.schemas.order import Order
from pharmabot.schemas.session import CartItem, DeliveryAddress

MAX_LISTED_ORDERS = 5
MAX_LISTED_PHARMACIES = 5

FIELD_LABELS = {
    "name": "Full name",
    "address": "House / street address",
    "city": "City",
    "pincode": "Pincode (5-6 digits)",
}

ADDRESS_EXAMPLE = (
    "John Doe\n"
    "123 Main St\n"
    "New Delhi\n"
    "110001\n"
    "Near City Mall (landmark, optional)"
)

APOLOGY = (
    "😔 Sorry, something went wrong on our side.\n\n"
    "Please try again in a moment, or type *hi* to return to the main menu."
)
NOT_UNDERSTOOD = "🤔 Sorry, I didn't understand that. Here's what I can help you with:"


def text(body: str) -> TextMessage:
    return TextMessage(body=body)


def buttons(header: str, body: str, *options) -> ButtonMessage:
    """buttons("Next", "What now?", ("view_cart", "View Cart"), ...)"""
    return ButtonMessage(
        header=header,
        body=body,
        buttons=[Button(id=option_id, title=title) for option_id, title in options],
    )


def price_label(amount) -> str:
    return f"₹{format_amount(amount)}"


# --- Menus ---

def main_menu() -> ListMessage:
    return ListMessage(
        header="🏥 PharmaCare",
        body="Welcome! How can we help you today?",
        sections=[ListSection(
            title="Main Menu",
            rows=[
                ListRow(id=Command.BROWSE_CATEGORIES, title="Browse Categories",
                        description="Explore medicines by category"),
                ListRow(id=Command.SEARCH_MEDICINES, title="Search Medicines",
                        description="Find a medicine by name"),
                ListRow(id=Command.UPLOAD_PRESCRIPTION, title="Upload Prescription",
                        description="Send a prescription photo for review"),
                ListRow(id=Command.TRACK_ORDER, title="Track Orders",
                        description="See the status of your recent orders"),
                ListRow(id=Command.FIND_PHARMACY, title="Find Pharmacy",
                        description="Pharmacies near your city or pincode"),
            ],
        )],
    )


def shop_options(header: str = "What next?", body: str = "What would you like to do?") -> ButtonMessage:
    return buttons(
        header, body,
        (Command.BROWSE_CATEGORIES, "Browse Categories"),
        (Command.SEARCH_MEDICINES, "Search Medicines"),
        (Command.MAIN_MENU, "Main Menu"),
    )


# --- Catalog ---

def categories_list(categories: List[Category]) -> ListMessage:
    rows = [
        ListRow(
            id=f"{Command.SELECT_CATEGORY}{category.id}",
            title=category.display_name,
            description=category.description or f"Browse {category.display_name} medicines",
        )
        for category in categories[:MAX_LIST_ROWS]
    ]
    return ListMessage(
        header="🏥 Medicine Categories",
        body="Select a category to browse medicines:",
        sections=[ListSection(title="Categories", rows=rows)],
    )


def medicine_row_description(medicine: Medicine) -> str:
    description = price_label(medicine.unit_price)
    if medicine.requires_prescription:
        description += " | ℞ Prescription required"
    if medicine.description:
        description += f" | {medicine.description}"
    return description


def medicines_list(medicines: List[Medicine], header: str, body: str) -> ListMessage:
    rows = [
        ListRow(
            id=f"{Command.SELECT_MEDICINE}{medicine.id}",
            title=medicine.name,
            description=medicine_row_description(medicine),
        )
        for medicine in medicines[:MAX_LIST_ROWS]
    ]
    return ListMessage(header=header, body=body, sections=[ListSection(title="Medicines", rows=rows)])


def browse_navigation() -> ButtonMessage:
    return buttons(
        "Navigation", "Pick a medicine above, or:",
        (Command.VIEW_CART, "View Cart"),
        (Command.BROWSE_CATEGORIES, "All Categories"),
        (Command.MAIN_MENU, "Main Menu"),
    )


def medicine_card(medicine: Medicine) -> ButtonMessage:
    lines = [f"💊 *{medicine.name}*"]
    if medicine.description:
        lines.append(medicine.description)
    lines.append(f"Price: {price_label(medicine.unit_price)}")
    if medicine.mrp is not None and medicine.price is not None and medicine.mrp > medicine.price:
        lines.append(f"MRP: {price_label(medicine.mrp)}")
    if medicine.stock_quantity is not None:
        lines.append("In stock" if medicine.in_stock else "❌ Currently out of stock")
    if medicine.requires_prescription:
        lines.append("℞ Prescription required")

    out_of_stock = medicine.stock_quantity is not None and not medicine.in_stock
    if out_of_stock:
        options = [(Command.BROWSE_CATEGORIES, "Browse Categories"), (Command.MAIN_MENU, "Main Menu")]
    elif medicine.requires_prescription:
        options = [
            (f"{Command.ADD_TO_CART}{medicine.id}", "Add to Cart"),
            (f"{Command.ORDER_WITH_PRESCRIPTION}{medicine.id}", "Order with Rx"),
            (Command.VIEW_CART, "View Cart"),
        ]
    else:
        options = [
            (f"{Command.ADD_TO_CART}{medicine.id}", "Add to Cart"),
            (Command.VIEW_CART, "View Cart"),
            (Command.BROWSE_CATEGORIES, "Browse Categories"),
        ]
    return buttons("Medicine Details", "\n".join(lines), *options)


# --- Cart ---

def added_to_cart(item: CartItem) -> ButtonMessage:
    body = f"✅ Added *{item.name}* to your cart (quantity: {item.quantity})."
    if item.requires_prescription:
        body += "\n℞ You'll need to send a prescription photo at checkout."
    return buttons(
        "Cart Updated", body,
        (Command.VIEW_CART, "View Cart"),
        (Command.CHECKOUT, "Checkout"),
        (Command.BROWSE_CATEGORIES, "Continue Shopping"),
    )


def cart_summary(cart: List[CartItem]) -> TextMessage:
    lines = ["🛒 *Your Cart*", ""]
    for index, item in enumerate(cart, 1):
        lines.append(
            f"{index}. {item.name} x{item.quantity} @ {price_label(item.unit_price)} = {price_label(item.line_total)}"
        )
    lines += ["", f"*Total: {price_label(cart_total(cart))}*"]
    if cart_requires_prescription(cart):
        lines += ["", "℞ Some items need a prescription. You'll be asked for a photo at checkout."]
    return text("\n".join(lines))


def cart_actions() -> ButtonMessage:
    return buttons(
        "Cart Options", "What would you like to do?",
        (Command.CHECKOUT, "Checkout"),
        (Command.CLEAR_CART, "Clear Cart"),
        (Command.BROWSE_CATEGORIES, "Continue Shopping"),
    )


def empty_cart() -> ButtonMessage:
    return shop_options("Empty Cart", "🛒 Your cart is empty. Let's find what you need!")


# --- Checkout ---

def prescription_request(names: List[str]) -> TextMessage:
    listed = "\n".join(f"• {name}" for name in names)
    return text(
        "℞ These items need a valid prescription:\n"
        f"{listed}\n\n"
        "📸 Please send a clear photo of your prescription.\n"
        "Type *cancel* to cancel checkout."
    )


def delivery_details_prompt(missing: Optional[List[str]] = None) -> TextMessage:
    if missing:
        header = "⚠️ Some details are missing: " + ", ".join(FIELD_LABELS.get(f, f) for f in missing) + ".\n\n"
    else:
        header = "📦 Please send your delivery details.\n\n"
    required = "\n".join(f"{i}. {label}" for i, label in enumerate(FIELD_LABELS.values(), 1))
    return text(
        f"{header}"
        f"Send each on its own line:\n{required}\n5. Landmark (optional)\n\n"
        f"Example:\n{ADDRESS_EXAMPLE}\n\n"
        "Type *cancel* to cancel checkout."
    )


def address_confirmation(address: DeliveryAddress) -> ButtonMessage:
    lines = [
        "Please confirm your delivery address:",
        "",
        f"👤 {address.name}",
        f"🏠 {address.address}",
        f"🏙️ {address.city} - {address.pincode}",
    ]
    if address.landmark:
        lines.append(f"📍 Near {address.landmark}")
    return buttons(
        "Delivery Address", "\n".join(lines),
        (Command.CONFIRM_ADDRESS_YES, "Confirm"),
        (Command.CONFIRM_ADDRESS_EDIT, "Edit Address"),
        (Command.CANCEL_CHECKOUT, "Cancel"),
    )


def order_placed(order: Order) -> List:
    return [
        text(
            "✅ Order placed successfully!\n\n"
            f"📋 Order ID: {order.order_id}\n"
            f"💰 Total: {price_label(order.total_amount)}\n\n"
            "Your order will be processed within 2 hours."
        ),
        buttons(
            "Next Steps", "What would you like to do next?",
            (Command.TRACK_ORDER, "Track Order"),
            (Command.BROWSE_CATEGORIES, "Continue Shopping"),
            (Command.MAIN_MENU, "Main Menu"),
        ),
    ]


def no_fulfillment(pincode: Optional[str]) -> TextMessage:
    where = f"pincode {pincode}" if pincode else "that address"
    return text(
        f"😔 Sorry, no pharmacy currently delivers to {where}.\n\n"
        "Your cart is saved. Please send a different delivery address, or type *cancel*."
    )


# --- Orders & pharmacies ---

def orders_summary(orders: List[Order]) -> TextMessage:
    lines = ["📦 *Your Recent Orders*", ""]
    for index, order in enumerate(orders[:MAX_LISTED_ORDERS], 1):
        placed = order.created_at.strftime("%d %b %Y") if order.created_at else "N/A"
        lines += [
            f"*{index}. Order #{order.order_id or 'N/A'}*",
            f"📅 {placed}",
            f"🏪 Pharmacy: {order.pharmacy_name or 'N/A'}",
            f"💰 Total: {price_label(order.total_amount)}",
            f"📦 Status: {order.status or 'Processing'}",
            "",
        ]
    return text("\n".join(lines).rstrip())


def orders_actions() -> ButtonMessage:
    return buttons(
        "Next Steps", "What would you like to do next?",
        (Command.BROWSE_CATEGORIES, "Browse Categories"),
        (Command.TRACK_ORDER, "Refresh Orders"),
        (Command.MAIN_MENU, "Main Menu"),
    )


def pharmacies_summary(pharmacies: List[Pharmacy], location: str) -> TextMessage:
    lines = [f"🏥 *Pharmacies near {location}*", ""]
    for index, pharmacy in enumerate(pharmacies[:MAX_LISTED_PHARMACIES], 1):
        lines.append(f"*{index}. {pharmacy.name}*")
        if pharmacy.address:
            lines.append(f"   📍 {pharmacy.address}")
        if pharmacy.phone:
            lines.append(f"   📞 {pharmacy.phone}")
        if pharmacy.is_24x7:
            lines.append("   🕐 Open 24x7")
        lines.append("")
    return text("\n".join(lines).rstrip())


def pharmacy_actions() -> ButtonMessage:
    return buttons(
        "Pharmacy Options", "What would you like to do?",
        (Command.BROWSE_CATEGORIES, "Browse Medicines"),
        (Command.FIND_PHARMACY, "Another Location"),
        (Command.MAIN_MENU, "Main Menu"),
    )


def no_pharmacies(location: str) -> List:
    return [
        text(f"No pharmacies found near {location}. Type another city name or pincode."),
        buttons(
            "Location Options", "Or choose:",
            (Command.FIND_PHARMACY, "Try Again"),
            (Command.MAIN_MENU, "Main Menu"),
        ),
    ]
