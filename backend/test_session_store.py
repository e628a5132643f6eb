"""Session store: backend round-trips, fallback mirror, repair of inconsistent sessions."""
import json

import httpx
import pytest

from conftest import PHONE, run
from pharmabot.agent.conversation_state import ConversationStep
from pharmabot.db.init_db import init_db
from pharmabot.db.session import build_engine, build_session_factory
from pharmabot.models.conversation_state import ConversationState
from pharmabot.schemas.session import CartItem, ContextData, DeliveryAddress, Session
from pharmabot.services.api_client import ApiClient
from pharmabot.services.session_store import LocalSessionMirror, SessionStore

SESSION_URL = f"/api/whatsapp-session/{PHONE}/"


@pytest.fixture
def mirror():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield LocalSessionMirror(build_session_factory(engine))
    engine.dispose()


class FakeBackend:
    """In-memory stand-in for the session endpoint."""

    def __init__(self):
        self.records = {}
        self.down = False
        self.calls = []

    def __call__(self, request: httpx.Request):
        self.calls.append((request.method, request.url.path))
        if self.down:
            raise httpx.ConnectError("backend down")
        phone = request.url.path.rstrip("/").rsplit("/", 1)[-1]
        if request.method == "GET":
            if phone not in self.records:
                return httpx.Response(404, json={"detail": "Not found."})
            return httpx.Response(200, json=self.records[phone])
        if request.method == "POST":
            self.records[phone] = {"phone_number": phone, **json.loads(request.content)}
            return httpx.Response(201, json=self.records[phone])
        if request.method == "PATCH":
            if phone not in self.records:
                return httpx.Response(404, json={"detail": "Not found."})
            self.records[phone].update(json.loads(request.content))
            return httpx.Response(200, json=self.records[phone])
        return httpx.Response(405)


def with_store(backend, mirror, action):
    async def go():
        api = ApiClient("http://backend.test", backoff=0,
                        client=httpx.AsyncClient(transport=httpx.MockTransport(backend)))
        try:
            return await action(SessionStore(api, mirror))
        finally:
            await api.aclose()
    return run(go())


def cart_session(step=ConversationStep.BROWSE_MEDICINES) -> Session:
    return Session(
        phone_number=PHONE,
        current_step=step,
        context_data=ContextData(cart=[CartItem(medicine_id="1", name="Dolo", unit_price="30", quantity=2)]),
    )


def test_unknown_user_gets_a_new_session(mirror):
    backend = FakeBackend()

    session = with_store(backend, mirror, lambda store: store.get(PHONE))

    assert session.current_step == ConversationStep.START
    assert session.context_data.cart == []
    assert not session.is_fallback
    assert backend.calls == [("GET", SESSION_URL), ("POST", SESSION_URL)]


def test_save_then_get_round_trip(mirror):
    backend = FakeBackend()

    async def action(store):
        await store.get(PHONE)
        assert await store.save(cart_session()) is True
        return await store.get(PHONE)

    session = with_store(backend, mirror, action)

    assert session.current_step == ConversationStep.BROWSE_MEDICINES
    assert session.context_data.cart[0].quantity == 2
    assert backend.records[PHONE]["context_data"]["cart"][0]["medicine_id"] == "1"


def test_outage_without_mirror_row_synthesizes_fallback(mirror):
    backend = FakeBackend()
    backend.down = True

    session = with_store(backend, mirror, lambda store: store.get(PHONE))

    assert session.is_fallback
    assert session.current_step == ConversationStep.START


def test_failed_save_is_kept_in_mirror_and_served_during_outage(mirror):
    backend = FakeBackend()
    backend.down = True

    async def action(store):
        saved = await store.save(cart_session())
        return saved, await store.get(PHONE)

    saved, session = with_store(backend, mirror, action)

    assert saved is False
    assert session.is_fallback
    assert session.current_step == ConversationStep.BROWSE_MEDICINES
    assert session.context_data.cart[0].name == "Dolo"

    db = mirror.session_factory()
    try:
        row = db.query(ConversationState).filter_by(phone_number=PHONE).one()
        assert row.is_fallback is True
    finally:
        db.close()


def test_save_after_outage_creates_missing_backend_record(mirror):
    backend = FakeBackend()

    saved = with_store(backend, mirror, lambda store: store.save(cart_session()))

    assert saved is True
    assert ("POST", SESSION_URL) in backend.calls
    assert backend.records[PHONE]["current_step"] == "browse_medicines"


def test_inconsistent_session_is_repaired_keeping_cart(mirror):
    backend = FakeBackend()
    backend.records[PHONE] = {
        "current_step": "confirm_delivery_address",
        "context_data": {"cart": [{"id": 5, "name": "Legacy", "price": "10"}], "search_query": "x"},
    }

    session = with_store(backend, mirror, lambda store: store.get(PHONE))

    assert session.current_step == ConversationStep.MAIN_MENU
    assert [item.medicine_id for item in session.context_data.cart] == ["5"]
    assert session.context_data.search_query is None


def test_checkout_step_with_empty_cart_is_repaired():
    session = Session(phone_number=PHONE, current_step=ConversationStep.AWAITING_DELIVERY_DETAILS)

    assert SessionStore.repair(session).current_step == ConversationStep.MAIN_MENU


def test_consistent_session_is_untouched():
    session = cart_session(ConversationStep.CONFIRM_DELIVERY_ADDRESS)
    session.context_data.delivery_address = DeliveryAddress(
        name="A", address_lines=["1 St"], city="Delhi", pincode="110001"
    )

    assert SessionStore.repair(session) is session


def test_unknown_step_and_null_context_are_tolerated():
    session = Session.model_validate({"phone_number": PHONE, "current_step": "bogus", "context_data": None})

    assert session.current_step == ConversationStep.START
    assert session.context_data == ContextData()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
