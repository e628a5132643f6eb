"""
Conversation vocabulary: dialogue steps, command ids, and the keyword
tables that map free text onto them.

Dispatch precedence (first match wins):
1. Image while a prescription is pending / checkout in progress
2. Greeting anywhere in the text -> main menu reset
3. Commands (button/list id or exact phrase)
4. Step-scoped free-text handlers
5. Fallback -> "didn't understand" + main menu
"""
import re
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple


class ConversationStep(str, Enum):
    """Values of Session.current_step"""
    START = "start"
    MAIN_MENU = "main_menu"
    BROWSE_CATEGORIES = "browse_categories"
    BROWSE_MEDICINES = "browse_medicines"
    SEARCH_RESULTS = "search_results"
    AWAITING_SEARCH_QUERY = "awaiting_search_query"
    AWAITING_LOCATION = "awaiting_location"
    AWAITING_PRESCRIPTION_UPLOAD = "awaiting_prescription_upload"
    AWAITING_PRESCRIPTION_CHECKOUT = "awaiting_prescription_checkout"
    CHECKOUT_STARTED = "checkout_started"  # written by the legacy bot only
    AWAITING_DELIVERY_DETAILS = "awaiting_delivery_details"
    CONFIRM_DELIVERY_ADDRESS = "confirm_delivery_address"
    PROCESSING_PAYMENT = "processing_payment"


class Command:
    """Menu actions - ids double as button/list reply ids"""
    MAIN_MENU = "main_menu"
    BROWSE_CATEGORIES = "browse_categories"
    SEARCH_MEDICINES = "search_medicines"
    VIEW_CART = "view_cart"
    CHECKOUT = "checkout"
    CLEAR_CART = "clear_cart"
    CANCEL_CHECKOUT = "cancel_checkout"
    TRACK_ORDER = "track_order"
    FIND_PHARMACY = "find_pharmacy"
    UPLOAD_PRESCRIPTION = "upload_prescription"

    # Parameterised (prefix + id)
    SELECT_CATEGORY = "cat_"
    SELECT_MEDICINE = "med_"
    ADD_TO_CART = "add_"
    ORDER_WITH_PRESCRIPTION = "rx_"

    # Address confirmation buttons (only meaningful in CONFIRM_DELIVERY_ADDRESS)
    CONFIRM_ADDRESS_YES = "confirm_address_yes"
    CONFIRM_ADDRESS_EDIT = "confirm_address_edit"


# Exact (normalized) phrases that trigger a command when typed
COMMAND_PHRASES: Dict[str, FrozenSet[str]] = {
    Command.BROWSE_CATEGORIES: frozenset({"browse categories", "browse", "categories", "browse_categories"}),
    Command.SEARCH_MEDICINES: frozenset({"search medicines", "search", "search medicine", "search_medicines"}),
    Command.VIEW_CART: frozenset({"view cart", "cart", "my cart", "view_cart"}),
    Command.CHECKOUT: frozenset({"checkout", "check out"}),
    Command.CLEAR_CART: frozenset({"clear cart", "clear_cart", "empty cart"}),
    Command.CANCEL_CHECKOUT: frozenset({"cancel checkout", "cancel_checkout", "cancel"}),
    Command.TRACK_ORDER: frozenset({"track order", "track orders", "track_order", "my orders"}),
    Command.FIND_PHARMACY: frozenset({"find pharmacy", "find pharmacies", "find_pharmacy"}),
    Command.UPLOAD_PRESCRIPTION: frozenset({"upload prescription", "upload_prescription"}),
}

# Prefix commands: which sources may carry them
PREFIX_COMMANDS: Tuple[str, ...] = (
    Command.SELECT_CATEGORY,
    Command.SELECT_MEDICINE,
    Command.ADD_TO_CART,
    Command.ORDER_WITH_PRESCRIPTION,
)
TYPABLE_PREFIXES: FrozenSet[str] = frozenset({Command.SELECT_MEDICINE})

GREETING_PATTERN = re.compile(r"\b(hi|hello|start)\b")
MAIN_MENU_PHRASE = "main menu"

AFFIRMATIVE_WORDS: FrozenSet[str] = frozenset({"yes", "y", "confirm", "ok", "correct", "proceed"})
EDIT_WORDS: FrozenSet[str] = frozenset({"edit", "no", "n", "change", "wrong"})

# Steps entered only once a checkout has begun
CHECKOUT_STEPS: FrozenSet[ConversationStep] = frozenset({
    ConversationStep.CHECKOUT_STARTED,
    ConversationStep.AWAITING_PRESCRIPTION_CHECKOUT,
    ConversationStep.AWAITING_DELIVERY_DETAILS,
    ConversationStep.CONFIRM_DELIVERY_ADDRESS,
    ConversationStep.PROCESSING_PAYMENT,
})


def normalize_text(text: Optional[str]) -> str:
    """Lowercase, trim and collapse inner whitespace."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text.strip().lower())


def is_greeting(text: Optional[str]) -> bool:
    normalized = normalize_text(text)
    if not normalized:
        return False
    return MAIN_MENU_PHRASE in normalized or bool(GREETING_PATTERN.search(normalized))


def match_phrase_command(text: Optional[str]) -> Optional[str]:
    """Map a whole typed phrase (or a reply id) onto a plain command."""
    normalized = normalize_text(text)
    if not normalized:
        return None
    for command, phrases in COMMAND_PHRASES.items():
        if normalized in phrases:
            return command
    return None


def split_prefixed(value: Optional[str], allowed: Tuple[str, ...] = PREFIX_COMMANDS) -> Optional[Tuple[str, str]]:
    """'med_42' -> ('med_', '42'). None when no known prefix or empty id."""
    if not value:
        return None
    value = value.strip()
    for prefix in allowed:
        if value.lower().startswith(prefix) and len(value) > len(prefix):
            return prefix, value[len(prefix):]
    return None
