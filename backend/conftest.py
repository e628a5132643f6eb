"""
Shared fakes for the bot tests.

The fakes stand in for the backend adapters at the same seams the real
container wires: the engine and the turn handler only see these objects.
"""
import asyncio
from decimal import Decimal
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

from pharmabot.agent.dialogue_engine import DialogueEngine
from pharmabot.core.config import Settings
from pharmabot.core.exceptions import NoFulfillmentError
from pharmabot.schemas.catalog import Category, Medicine, Pharmacy
from pharmabot.schemas.customer import Customer
from pharmabot.schemas.media import MediaDownload, PrescriptionUpload
from pharmabot.schemas.order import Order
from pharmabot.schemas.session import Session
from pharmabot.schemas.webhook import EventKind, InboundEvent

TEST_ENV = {
    "ENVIRONMENT": "test",
    "WHATSAPP_TOKEN": "test-token",
    "WHATSAPP_PHONE_NUMBER_ID": "12345",
    "WEBHOOK_VERIFY_TOKEN": "verify-me",
    "BACKEND_BASE_URL": "http://backend.test",
    "FALLBACK_DATABASE_URL": "sqlite://",
    "RETRY_BACKOFF_SECONDS": "0",
}

PHONE = "919800000001"


def run(coro):
    return asyncio.run(coro)


def text_event(body: str) -> InboundEvent:
    return InboundEvent(kind=EventKind.TEXT, text=body)


def reply_event(reply_id: str, title: str = "", kind: EventKind = EventKind.BUTTON) -> InboundEvent:
    return InboundEvent(kind=kind, reply_id=reply_id, reply_title=title, text=title)


def image_event(media_id: str = "media-1") -> InboundEvent:
    return InboundEvent(kind=EventKind.IMAGE, media_id=media_id)


def paracetamol() -> Medicine:
    return Medicine(id="1", name="Paracetamol 500mg", price=Decimal("25.50"), prescription_type="OTC",
                    stock_quantity=100)


def amoxicillin() -> Medicine:
    return Medicine(id="2", name="Amoxicillin 250mg", price=Decimal("120.00"), prescription_type="RX",
                    stock_quantity=20)


class FakeCatalog:
    def __init__(self):
        self.categories: List[Category] = [Category(id="10", name="Pain Relief"), Category(id="11", name="Antibiotics")]
        self.medicines: Dict[str, Medicine] = {m.id: m for m in (paracetamol(), amoxicillin())}
        self.by_category: Dict[str, List[Medicine]] = {"10": [paracetamol()], "11": [amoxicillin()], "12": []}
        self.search_results: Dict[str, List[Medicine]] = {"paracetamol": [paracetamol()]}
        self.fail_with: Optional[Exception] = None

    async def list_categories(self):
        if self.fail_with:
            raise self.fail_with
        return list(self.categories)

    async def medicines_by_category(self, category_id):
        return list(self.by_category.get(category_id, []))

    async def search(self, query, limit=10):
        return list(self.search_results.get(query.lower(), []))

    async def get_medicine(self, medicine_id):
        return self.medicines.get(medicine_id)


class FakeCustomers:
    def __init__(self, customer: Optional[Customer] = None):
        self.customer = customer or Customer(phone_number=PHONE)
        self.updates: List[dict] = []

    async def get_or_create(self, phone_number, updates=None):
        if updates:
            self.updates.append(updates)
            self.customer = self.customer.model_copy(update=updates)
        return self.customer


class FakePharmacies:
    def __init__(self):
        self.results: List[Pharmacy] = [Pharmacy(id="p1", name="City Pharmacy", address="MG Road", phone="080-1")]
        self.calls: List[dict] = []

    async def nearby(self, city=None, pincode=None, latitude=None, longitude=None):
        self.calls.append({"city": city, "pincode": pincode, "latitude": latitude, "longitude": longitude})
        return list(self.results)


class FakeOrders:
    def __init__(self):
        self.created: List[dict] = []
        self.history: List[Order] = []
        self.no_fulfillment = False

    async def create_quick_order(self, phone_number, items, address, fallback_total=None):
        if self.no_fulfillment:
            raise NoFulfillmentError(city=address.city, pincode=address.pincode)
        self.created.append({"phone": phone_number, "items": items, "address": address, "total": fallback_total})
        return Order(order_id=f"ORD-{len(self.created)}", total_amount=fallback_total, status="pending")

    async def list_for_customer(self, phone_number, limit=5):
        return list(self.history[:limit])


class FakeMedia:
    def __init__(self):
        self.downloads: List[str] = []

    async def download_media(self, media_id):
        self.downloads.append(media_id)
        return MediaDownload(content=b"\xff\xd8jpeg", size=6, content_type="image/jpeg")


class FakePrescriptions:
    def __init__(self):
        self.saved: List[str] = []

    async def save(self, phone_number, media_id, media):
        path = f"prescriptions/{phone_number}/prescription_1_{media_id}.jpg"
        self.saved.append(path)
        return PrescriptionUpload(path=path, file_name=path.rsplit("/", 1)[-1], size=media.size,
                                  content_type=media.content_type)


@pytest.fixture
def test_settings():
    return Settings(environ=TEST_ENV)


@pytest.fixture
def bot():
    """Engine wired to fakes, plus the fakes for assertions."""
    fakes = SimpleNamespace(
        catalog=FakeCatalog(),
        customers=FakeCustomers(),
        pharmacies=FakePharmacies(),
        orders=FakeOrders(),
        media=FakeMedia(),
        prescriptions=FakePrescriptions(),
    )
    fakes.engine = DialogueEngine(
        catalog=fakes.catalog,
        customers=fakes.customers,
        pharmacies=fakes.pharmacies,
        orders=fakes.orders,
        media=fakes.media,
        prescriptions=fakes.prescriptions,
    )
    return fakes


@pytest.fixture
def new_session():
    return Session(phone_number=PHONE)
