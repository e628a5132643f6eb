"""
Dialogue Engine - per-conversation state machine.

ARCHITECTURE:
- handle(session, event) works on a deep copy of the session and returns
  the new session plus the messages to send. It never persists or sends.
- Read-only backend lookups, prescription storage and the order-creating
  call go through injected adapters.
- Exceptions other than the classified ones below propagate; the turn
  handler turns them into an apology and keeps the old session.

Dispatch precedence (first match wins):
1. Image while a prescription is pending / checkout in progress
2. Greeting -> main menu, context reset
3. Commands (reply id or exact phrase)
4. Step-scoped handlers (delivery details, search query, location, confirmation)
5. Fallback -> "didn't understand", then a synthetic greeting (main menu)
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Protocol, Tuple

from pharmabot.agent import replies
from pharmabot.agent.address_parser import VALID_PINCODE, parse_delivery_address
from pharmabot.agent.cart import (
    add_to_cart,
    attach_prescription,
    build_order_items,
    cart_total,
    missing_prescriptions,
)
from pharmabot.agent.conversation_state import (
    AFFIRMATIVE_WORDS,
    CHECKOUT_STEPS,
    EDIT_WORDS,
    TYPABLE_PREFIXES,
    Command,
    ConversationStep,
    is_greeting,
    match_phrase_command,
    normalize_text,
    split_prefixed,
)
from pharmabot.core.exceptions import NoFulfillmentError, ParseError, RemoteServiceError, describe_for_log
from pharmabot.schemas.media import MediaDownload, PrescriptionUpload
from pharmabot.schemas.messages import OutboundMessage
from pharmabot.schemas.order import OrderLine
from pharmabot.schemas.session import ContextData, DeliveryAddress, PendingPrescription, Session
from pharmabot.schemas.webhook import EventKind, InboundEvent
from pharmabot.services.catalog import CatalogService
from pharmabot.services.customers import CustomerService
from pharmabot.services.orders import OrderService
from pharmabot.services.pharmacies import PharmacyService
from pharmabot.services.prescriptions import PrescriptionStore

logger = logging.getLogger(__name__)

Step = ConversationStep


class MediaSource(Protocol):
    async def download_media(self, media_id: str) -> MediaDownload: ...


@dataclass
class TurnResult:
    session: Session
    messages: List[OutboundMessage] = field(default_factory=list)


@dataclass
class _Turn:
    session: Session
    messages: List[OutboundMessage] = field(default_factory=list)

    @property
    def ctx(self) -> ContextData:
        return self.session.context_data

    @property
    def phone(self) -> str:
        return self.session.phone_number

    def say(self, *messages: OutboundMessage):
        self.messages.extend(messages)

    def goto(self, step: ConversationStep):
        self.session.current_step = step


class DialogueEngine:
    def __init__(
        self,
        catalog: CatalogService,
        customers: CustomerService,
        pharmacies: PharmacyService,
        orders: OrderService,
        media: MediaSource,
        prescriptions: PrescriptionStore,
    ):
        self.catalog = catalog
        self.customers = customers
        self.pharmacies = pharmacies
        self.orders = orders
        self.media = media
        self.prescriptions = prescriptions

        self._commands = {
            Command.MAIN_MENU: self._main_menu,
            Command.BROWSE_CATEGORIES: self._browse_categories,
            Command.SEARCH_MEDICINES: self._ask_search_query,
            Command.VIEW_CART: self._view_cart,
            Command.CHECKOUT: self._checkout,
            Command.CLEAR_CART: self._clear_cart,
            Command.CANCEL_CHECKOUT: self._cancel_checkout,
            Command.TRACK_ORDER: self._track_orders,
            Command.FIND_PHARMACY: self._ask_location,
            Command.UPLOAD_PRESCRIPTION: self._ask_standalone_prescription,
        }
        self._prefixed = {
            Command.SELECT_CATEGORY: self._select_category,
            Command.SELECT_MEDICINE: self._select_medicine,
            Command.ADD_TO_CART: self._add_to_cart,
            Command.ORDER_WITH_PRESCRIPTION: self._order_with_prescription,
        }

    async def handle(self, session: Session, event: InboundEvent) -> TurnResult:
        turn = _Turn(session=session.model_copy(deep=True))
        old_step = session.current_step

        await self._dispatch(turn, event)

        new_step = turn.session.current_step
        if new_step != old_step:
            logger.info(f"[Engine] {turn.phone}: {old_step.value} -> {new_step.value}")
        return TurnResult(session=turn.session, messages=turn.messages)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, turn: _Turn, event: InboundEvent):
        step = turn.session.current_step

        # 1. Prescription images
        if event.kind == EventKind.IMAGE and await self._handle_image(turn, event):
            return

        # 2. Greeting
        if event.reply_id == Command.MAIN_MENU or self._is_greeting(step, event):
            await self._main_menu(turn)
            return

        # 3. Commands
        resolved = self._resolve_command(event)
        if resolved is not None:
            command, argument = resolved
            if argument is None:
                await self._commands[command](turn)
            else:
                await self._prefixed[command](turn, argument)
            return

        # 4. Step-scoped handlers
        if step == Step.AWAITING_DELIVERY_DETAILS and event.kind == EventKind.TEXT:
            await self._capture_delivery_details(turn, event.text)
            return
        if step == Step.CONFIRM_DELIVERY_ADDRESS and event.kind in (EventKind.TEXT, EventKind.BUTTON):
            await self._confirm_delivery_address(turn, event)
            return
        if step == Step.AWAITING_SEARCH_QUERY and event.kind == EventKind.TEXT and event.text.strip():
            await self._search(turn, event.text.strip())
            return
        if step == Step.AWAITING_LOCATION and event.kind in (EventKind.TEXT, EventKind.LOCATION):
            await self._find_pharmacies(turn, event)
            return
        if step in (Step.AWAITING_PRESCRIPTION_CHECKOUT, Step.AWAITING_PRESCRIPTION_UPLOAD) \
                and event.kind == EventKind.TEXT:
            self._remind_prescription_photo(turn)
            return
        if step == Step.CHECKOUT_STARTED:
            # Legacy sessions: resolve to a concrete waiting state
            await self._checkout(turn)
            return
        if event.kind == EventKind.IMAGE and step in CHECKOUT_STEPS:
            self._reprompt_checkout_step(turn)
            return

        # 5. Fallback
        logger.info(f"[Engine] {turn.phone}: unrecognized {event.kind.value} input at {step.value}")
        turn.say(replies.text(replies.NOT_UNDERSTOOD))
        await self._dispatch(turn, InboundEvent.synthetic_greeting())

    @staticmethod
    def _is_greeting(step: ConversationStep, event: InboundEvent) -> bool:
        if event.kind != EventKind.TEXT:
            return False
        # A multi-line answer to the address prompt is an address ("Hi-Tech City")
        if step == Step.AWAITING_DELIVERY_DETAILS and "\n" in event.text.strip():
            return False
        return is_greeting(event.text)

    @staticmethod
    def _resolve_command(event: InboundEvent) -> Optional[Tuple[str, Optional[str]]]:
        """(command, None) for plain commands, (prefix, id) for parameterised ones."""
        if event.is_reply:
            raw = event.reply_id or ""
            prefixed = split_prefixed(raw)
        elif event.kind == EventKind.TEXT:
            raw = event.text
            prefixed = split_prefixed(raw, allowed=tuple(TYPABLE_PREFIXES))
        else:
            return None

        if prefixed is not None:
            return prefixed
        command = match_phrase_command(raw)
        if command is not None:
            return command, None
        return None

    # ------------------------------------------------------------------
    # Menu & browsing
    # ------------------------------------------------------------------

    async def _main_menu(self, turn: _Turn):
        try:
            await self.customers.get_or_create(turn.phone)
        except RemoteServiceError as e:
            logger.warning(f"[Engine] Could not ensure customer profile for {turn.phone}: {describe_for_log(e)}")

        turn.session.context_data = ContextData()
        turn.goto(Step.MAIN_MENU)
        turn.say(replies.main_menu())

    @staticmethod
    def _leave_checkout(turn: _Turn):
        """Drop in-flight checkout / pending-prescription state, keep the cart."""
        ctx = turn.ctx
        ctx.checkout_in_progress = False
        ctx.awaiting_prescription = None
        ctx.delivery_address = None

    async def _browse_categories(self, turn: _Turn):
        categories = await self.catalog.list_categories()
        if not categories:
            turn.say(replies.text("Sorry, no categories are available at the moment. Please try again later."))
            return

        self._leave_checkout(turn)
        turn.goto(Step.BROWSE_CATEGORIES)
        turn.say(replies.categories_list(categories))

    async def _select_category(self, turn: _Turn, category_id: str):
        medicines = await self.catalog.medicines_by_category(category_id)
        if not medicines:
            turn.say(
                replies.text("No medicines are available in this category right now."),
                replies.shop_options(),
            )
            return

        self._leave_checkout(turn)
        turn.ctx.current_category = category_id
        turn.goto(Step.BROWSE_MEDICINES)
        turn.say(
            replies.medicines_list(medicines, "💊 Medicines", "Select a medicine to see details:"),
            replies.browse_navigation(),
        )

    async def _ask_search_query(self, turn: _Turn):
        self._leave_checkout(turn)
        turn.goto(Step.AWAITING_SEARCH_QUERY)
        turn.say(replies.text("🔍 Type the name of the medicine you're looking for:"))

    async def _search(self, turn: _Turn, query: str):
        turn.ctx.search_query = query
        results = await self.catalog.search(query)
        if not results:
            # Stay in AWAITING_SEARCH_QUERY so the next text is another search
            turn.say(
                replies.text(f"No medicines found for \"{query}\". Try another name."),
                replies.buttons(
                    "Search Options", "Or choose:",
                    (Command.SEARCH_MEDICINES, "Search Again"),
                    (Command.BROWSE_CATEGORIES, "Browse Categories"),
                    (Command.MAIN_MENU, "Main Menu"),
                ),
            )
            return

        turn.goto(Step.BROWSE_MEDICINES)
        turn.say(
            replies.medicines_list(results, "🔍 Search Results", f"Results for \"{query}\":"),
            replies.browse_navigation(),
        )

    async def _select_medicine(self, turn: _Turn, medicine_id: str):
        medicine = await self.catalog.get_medicine(medicine_id)
        if medicine is None:
            turn.say(replies.text("Sorry, that medicine could not be found. Please pick another one."))
            return

        self._leave_checkout(turn)
        turn.goto(Step.BROWSE_MEDICINES)
        turn.say(replies.medicine_card(medicine))

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    async def _add_to_cart(self, turn: _Turn, medicine_id: str):
        medicine = await self.catalog.get_medicine(medicine_id)
        if medicine is None:
            turn.say(replies.text("Sorry, that medicine could not be found. Please pick another one."))
            return

        self._leave_checkout(turn)
        turn.ctx.cart = add_to_cart(turn.ctx.cart, medicine)
        turn.goto(Step.BROWSE_MEDICINES)
        line = next(item for item in turn.ctx.cart if item.medicine_id == medicine.id)
        turn.say(replies.added_to_cart(line))

    async def _view_cart(self, turn: _Turn):
        cart = turn.ctx.cart
        if not cart:
            turn.say(replies.empty_cart())
            return
        turn.say(replies.cart_summary(cart), replies.cart_actions())

    async def _clear_cart(self, turn: _Turn):
        self._leave_checkout(turn)
        turn.ctx.cart = []
        turn.goto(Step.BROWSE_MEDICINES)
        turn.say(replies.text("🗑️ Your cart has been cleared."), replies.shop_options())

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def _checkout(self, turn: _Turn):
        ctx = turn.ctx
        if not ctx.cart:
            turn.say(replies.empty_cart())
            if turn.session.current_step in CHECKOUT_STEPS:
                turn.goto(Step.BROWSE_MEDICINES)
            return

        ctx.checkout_in_progress = True
        ctx.awaiting_prescription = None
        ctx.delivery_address = None

        pending = missing_prescriptions(ctx.cart)
        if pending:
            turn.goto(Step.AWAITING_PRESCRIPTION_CHECKOUT)
            turn.say(replies.prescription_request([item.name for item in pending]))
            return

        turn.goto(Step.AWAITING_DELIVERY_DETAILS)
        turn.say(replies.delivery_details_prompt())

    async def _cancel_checkout(self, turn: _Turn):
        ctx = turn.ctx

        # Single-medicine prescription order: the cart is not involved
        if ctx.awaiting_prescription is not None and not ctx.checkout_in_progress:
            ctx.awaiting_prescription = None
            ctx.delivery_address = None
            turn.goto(Step.BROWSE_MEDICINES)
            turn.say(replies.text("❌ Prescription order cancelled. Your cart is unchanged."), replies.shop_options())
            return

        if turn.session.current_step in CHECKOUT_STEPS or ctx.checkout_in_progress:
            turn.session.context_data = ContextData()
            turn.goto(Step.BROWSE_MEDICINES)
            turn.say(replies.text("❌ Checkout cancelled and your cart was cleared."), replies.shop_options())
            return

        turn.say(replies.text("There's no checkout in progress to cancel."), replies.shop_options())

    async def _capture_delivery_details(self, turn: _Turn, text: str):
        try:
            address = parse_delivery_address(text)
        except ParseError as e:
            turn.say(replies.delivery_details_prompt(missing=e.missing))
            return

        turn.ctx.delivery_address = address
        turn.goto(Step.CONFIRM_DELIVERY_ADDRESS)
        turn.say(replies.address_confirmation(address))

    async def _confirm_delivery_address(self, turn: _Turn, event: InboundEvent):
        answer = normalize_text(event.reply_id or event.text)
        address = turn.ctx.delivery_address

        if event.reply_id == Command.CONFIRM_ADDRESS_YES or answer in AFFIRMATIVE_WORDS:
            profile_fields = address.to_profile_fields()
            try:
                await self.customers.get_or_create(turn.phone, updates=profile_fields)
            except RemoteServiceError as e:
                logger.warning(f"[Engine] Profile address update failed for {turn.phone}: {describe_for_log(e)}")
            turn.ctx.customer_info = profile_fields
            turn.goto(Step.PROCESSING_PAYMENT)
            await self._place_order(turn, address)
            return

        if event.reply_id == Command.CONFIRM_ADDRESS_EDIT or answer in EDIT_WORDS:
            turn.ctx.delivery_address = None
            turn.goto(Step.AWAITING_DELIVERY_DETAILS)
            turn.say(replies.delivery_details_prompt())
            return

        turn.say(replies.address_confirmation(address))

    async def _place_order(self, turn: _Turn, address: DeliveryAddress):
        """Create the pending single-medicine order if there is one, else the cart order."""
        pending = turn.ctx.awaiting_prescription
        if pending is not None and pending.prescription_file:
            await self._place_pending_order(turn, pending, address)
        else:
            await self._place_cart_order(turn, address)

    async def _place_cart_order(self, turn: _Turn, address: DeliveryAddress):
        ctx = turn.ctx
        if not ctx.cart:
            turn.session.context_data = ContextData()
            turn.goto(Step.BROWSE_MEDICINES)
            turn.say(replies.empty_cart())
            return

        pending = missing_prescriptions(ctx.cart)
        if pending:
            ctx.checkout_in_progress = True
            turn.goto(Step.AWAITING_PRESCRIPTION_CHECKOUT)
            turn.say(replies.prescription_request([item.name for item in pending]))
            return

        order = await self._submit_order(
            turn, build_order_items(ctx.cart), address, fallback_total=cart_total(ctx.cart)
        )
        if order is None:
            return

        turn.session.context_data = ContextData()
        turn.goto(Step.BROWSE_MEDICINES)
        turn.say(*replies.order_placed(order))

    async def _place_pending_order(self, turn: _Turn, pending: PendingPrescription, address: DeliveryAddress):
        items = [OrderLine(medicine_id=pending.medicine_id, quantity=1, prescription_file=pending.prescription_file)]
        order = await self._submit_order(turn, items, address, fallback_total=pending.unit_price)
        if order is None:
            return

        # Cart is not part of this order
        turn.session.context_data = turn.ctx.with_cart_only()
        turn.goto(Step.BROWSE_MEDICINES)
        turn.say(*replies.order_placed(order))

    async def _submit_order(self, turn: _Turn, items: List[OrderLine], address: DeliveryAddress,
                            fallback_total: Decimal):
        """Order or None when no pharmacy serves the address (user is asked for another one)."""
        try:
            order = await self.orders.create_quick_order(turn.phone, items, address, fallback_total=fallback_total)
        except NoFulfillmentError as e:
            logger.info(f"[Engine] {turn.phone}: no pharmacy for city={e.city!r} pincode={e.pincode!r}")
            turn.ctx.delivery_address = None
            turn.ctx.customer_info = {}
            turn.goto(Step.AWAITING_DELIVERY_DETAILS)
            turn.say(replies.no_fulfillment(e.pincode))
            return None

        logger.info(f"[Engine] {turn.phone}: order {order.order_id} created")
        return order

    def _reprompt_checkout_step(self, turn: _Turn):
        step = turn.session.current_step
        if step == Step.CONFIRM_DELIVERY_ADDRESS and turn.ctx.delivery_address is not None:
            turn.say(replies.address_confirmation(turn.ctx.delivery_address))
        else:
            turn.say(replies.delivery_details_prompt())

    # ------------------------------------------------------------------
    # Prescriptions
    # ------------------------------------------------------------------

    async def _order_with_prescription(self, turn: _Turn, medicine_id: str):
        medicine = await self.catalog.get_medicine(medicine_id)
        if medicine is None:
            turn.say(replies.text("Sorry, that medicine could not be found. Please pick another one."))
            return

        self._leave_checkout(turn)
        turn.ctx.awaiting_prescription = PendingPrescription(
            medicine_id=medicine.id,
            name=medicine.name,
            unit_price=medicine.unit_price,
        )
        turn.goto(Step.AWAITING_PRESCRIPTION_UPLOAD)
        turn.say(replies.prescription_request([medicine.name]))

    async def _ask_standalone_prescription(self, turn: _Turn):
        self._leave_checkout(turn)
        turn.goto(Step.AWAITING_PRESCRIPTION_UPLOAD)
        turn.say(replies.text(
            "📸 Please send a clear photo of your prescription.\n"
            "A pharmacist will review it and get back to you."
        ))

    def _remind_prescription_photo(self, turn: _Turn):
        turn.say(replies.text(
            "📸 We're waiting for a photo of your prescription.\n"
            "Send it as an image, or type *cancel* to stop."
        ))

    async def _handle_image(self, turn: _Turn, event: InboundEvent) -> bool:
        """Route an image to the matching prescription flow. False when none applies."""
        ctx = turn.ctx
        step = turn.session.current_step

        if step == Step.AWAITING_PRESCRIPTION_UPLOAD and ctx.awaiting_prescription is not None:
            await self._prescription_for_pending(turn, event.media_id)
            return True
        if step == Step.AWAITING_PRESCRIPTION_CHECKOUT or (ctx.checkout_in_progress and missing_prescriptions(ctx.cart)):
            await self._prescription_for_checkout(turn, event.media_id)
            return True
        if step == Step.AWAITING_PRESCRIPTION_UPLOAD:
            await self._standalone_prescription(turn, event.media_id)
            return True
        return False

    async def _store_prescription(self, turn: _Turn, media_id: str) -> PrescriptionUpload:
        media = await self.media.download_media(media_id)
        return await self.prescriptions.save(turn.phone, media_id, media)

    async def _known_address(self, turn: _Turn) -> Optional[DeliveryAddress]:
        """
        Session address if confirmed earlier, else a complete profile address.

        The profile is read from `customer_info` when this conversation has
        already seen it, and fetched from the backend (then cached) otherwise.
        """
        if turn.ctx.delivery_address is not None:
            return turn.ctx.delivery_address

        address = _profile_address(turn.ctx.customer_info)
        if address is not None:
            return address

        customer = await self.customers.get_or_create(turn.phone)
        profile_fields = customer.model_dump(include={"name", "address", "city", "pincode", "landmark"})
        address = _profile_address(profile_fields)
        if address is not None:
            turn.ctx.customer_info = profile_fields
        return address

    async def _after_prescription(self, turn: _Turn):
        address = await self._known_address(turn)
        if address is None:
            turn.goto(Step.AWAITING_DELIVERY_DETAILS)
            turn.say(
                replies.text("✅ Prescription received!"),
                replies.delivery_details_prompt(),
            )
            return
        turn.say(replies.text("✅ Prescription received! Placing your order..."))
        await self._place_order(turn, address)

    async def _prescription_for_checkout(self, turn: _Turn, media_id: str):
        upload = await self._store_prescription(turn, media_id)
        turn.ctx.cart = attach_prescription(turn.ctx.cart, upload.path)
        turn.ctx.checkout_in_progress = True
        await self._after_prescription(turn)

    async def _prescription_for_pending(self, turn: _Turn, media_id: str):
        upload = await self._store_prescription(turn, media_id)
        turn.ctx.awaiting_prescription.prescription_file = upload.path
        await self._after_prescription(turn)

    async def _standalone_prescription(self, turn: _Turn, media_id: str):
        await self._store_prescription(turn, media_id)
        turn.goto(Step.BROWSE_MEDICINES)
        turn.say(
            replies.text("✅ Prescription received! A pharmacist will review it and contact you shortly."),
            replies.shop_options(),
        )

    # ------------------------------------------------------------------
    # Orders & pharmacies
    # ------------------------------------------------------------------

    async def _track_orders(self, turn: _Turn):
        orders = await self.orders.list_for_customer(turn.phone)
        if not orders:
            turn.say(
                replies.text("📦 No orders found for your number yet."),
                replies.shop_options("Start Order", "Place your first order:"),
            )
            return
        turn.say(replies.orders_summary(orders), replies.orders_actions())

    async def _ask_location(self, turn: _Turn):
        self._leave_checkout(turn)
        turn.goto(Step.AWAITING_LOCATION)
        turn.say(replies.text(
            "📍 Type your city name or pincode, or share your location, to find nearby pharmacies."
        ))

    async def _find_pharmacies(self, turn: _Turn, event: InboundEvent):
        if event.kind == EventKind.LOCATION:
            label = "your location"
            pharmacies = await self.pharmacies.nearby(latitude=event.latitude, longitude=event.longitude)
        else:
            label = event.text.strip()
            if not label:
                turn.say(replies.text("Please type a city name or pincode."))
                return
            if VALID_PINCODE.match(label):
                pharmacies = await self.pharmacies.nearby(pincode=label)
            else:
                pharmacies = await self.pharmacies.nearby(city=label)

        if not pharmacies:
            turn.say(*replies.no_pharmacies(label))
            return

        turn.goto(Step.BROWSE_MEDICINES)
        turn.say(replies.pharmacies_summary(pharmacies, label), replies.pharmacy_actions())


def _profile_address(fields: dict) -> Optional[DeliveryAddress]:
    """DeliveryAddress from customer profile fields, or None unless complete."""
    pincode = fields.get("pincode") or ""
    if not (fields.get("address") and fields.get("city") and VALID_PINCODE.match(pincode)):
        return None
    return DeliveryAddress(
        name=fields.get("name") or "Customer",
        address_lines=[fields["address"]],
        city=fields["city"],
        pincode=pincode,
        landmark=fields.get("landmark") or None,
    )
