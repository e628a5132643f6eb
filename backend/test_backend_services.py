"""
Backend adapters (catalog, customers, pharmacies, orders), prescription
storage and the WhatsApp client, all against an httpx mock transport.
"""
import json
from decimal import Decimal

import httpx
import pytest

from conftest import PHONE, TEST_ENV, run
from pharmabot.core.config import Settings
from pharmabot.core.exceptions import HttpError, NoFulfillmentError
from pharmabot.schemas.media import MediaDownload
from pharmabot.schemas.messages import TextMessage
from pharmabot.schemas.order import OrderLine
from pharmabot.schemas.session import DeliveryAddress
from pharmabot.services.api_client import ApiClient
from pharmabot.services.catalog import CatalogService
from pharmabot.services.customers import CustomerService
from pharmabot.services.orders import OrderService
from pharmabot.services.pharmacies import PharmacyService
from pharmabot.services.prescriptions import PrescriptionStore, extension_for
from pharmabot.whatsapp.client import WhatsAppClient

BASE = "http://backend.test"

ADDRESS = DeliveryAddress(name="John Doe", address_lines=["123 Main St"], city="New Delhi",
                          pincode="110001", landmark="Near Mall")


class Routes:
    """(METHOD, path) -> response; unmatched requests get a 404."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"detail": "Not found."})
        if callable(response):
            return response(request)
        return response

    def sent(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]


def with_api(routes, use):
    async def go():
        api = ApiClient(BASE, backoff=0, client=httpx.AsyncClient(transport=httpx.MockTransport(routes)))
        try:
            return await use(api)
        finally:
            await api.aclose()
    return run(go())


# --- Catalog ---------------------------------------------------------------

def test_categories_accept_paginated_shape_and_int_ids():
    routes = Routes({("GET", "/api/categories/"): httpx.Response(200, json={
        "count": 2, "results": [{"id": 1, "name": "Pain Relief"}, {"id": 2, "name": None}],
    })})

    categories = with_api(routes, lambda api: CatalogService(api).list_categories())

    assert [c.id for c in categories] == ["1", "2"]
    assert categories[1].display_name == "Unnamed Category"


def test_malformed_medicines_are_skipped():
    routes = Routes({("GET", "/api/medicines/"): httpx.Response(200, json=[
        {"id": 1, "name": "Paracetamol", "price": "25.50", "prescription_type": "OTC"},
        {"id": 2},
        {"id": 3, "name": "Amoxicillin", "price": "", "mrp": "130", "prescription_type": "rx"},
    ])})

    medicines = with_api(routes, lambda api: CatalogService(api).medicines_by_category("10"))

    assert [m.id for m in medicines] == ["1", "3"]
    assert routes.requests[0].url.params["category"] == "10"
    assert medicines[1].unit_price == Decimal("130")
    assert medicines[1].requires_prescription


def test_search_sends_query_and_limit():
    routes = Routes({("GET", "/api/medicines/search/"): httpx.Response(200, json={"data": []})})

    assert with_api(routes, lambda api: CatalogService(api).search("dolo")) == []
    params = routes.requests[0].url.params
    assert params["q"] == "dolo"
    assert params["limit"] == "10"


def test_unknown_medicine_is_none():
    routes = Routes({})

    assert with_api(routes, lambda api: CatalogService(api).get_medicine("99")) is None


def test_medicine_lookup_server_error_propagates():
    routes = Routes({("GET", "/api/medicines/5/"): httpx.Response(500)})

    with pytest.raises(HttpError):
        with_api(routes, lambda api: CatalogService(api).get_medicine("5"))


# --- Customers -------------------------------------------------------------

def test_customer_created_on_first_contact():
    routes = Routes({("POST", f"/api/customers/{PHONE}/"): httpx.Response(201, json={"phone_number": PHONE})})

    customer = with_api(routes, lambda api: CustomerService(api).get_or_create(PHONE))

    assert customer.phone_number == PHONE
    assert not customer.has_delivery_address
    assert json.loads(routes.sent("POST", f"/api/customers/{PHONE}/")[0].content) == {"phone_number": PHONE}


def test_customer_profile_update():
    path = f"/api/customers/{PHONE}/"
    routes = Routes({
        ("GET", path): httpx.Response(200, json={"phone_number": PHONE}),
        ("PATCH", path): lambda request: httpx.Response(200, json={"phone_number": PHONE, **json.loads(request.content)}),
    })

    customer = with_api(routes, lambda api: CustomerService(api).get_or_create(PHONE, ADDRESS.to_profile_fields()))

    assert customer.city == "New Delhi"
    assert customer.has_delivery_address


# --- Pharmacies & orders ---------------------------------------------------

def test_nearby_sends_only_given_filters():
    routes = Routes({("GET", "/api/pharmacies/nearby/"): httpx.Response(200, json=[{"id": 7, "name": "City Pharmacy"}])})

    pharmacies = with_api(routes, lambda api: PharmacyService(api).nearby(pincode="110001"))

    assert pharmacies[0].id == "7"
    assert dict(routes.requests[0].url.params) == {"pincode": "110001"}


def order_service(api):
    return OrderService(api, PharmacyService(api))


def test_quick_order_payload():
    routes = Routes({
        ("GET", "/api/pharmacies/nearby/"): httpx.Response(200, json=[{"id": 7, "name": "A"}, {"id": 8, "name": "B"}]),
        ("POST", "/api/orders/quick-create/"): httpx.Response(201, json={
            "order_id": 501, "total_amount": "51.00", "status": "pending",
        }),
    })
    items = [OrderLine(medicine_id="1", quantity=2), OrderLine(medicine_id="2", prescription_file="prescriptions/x.jpg")]

    order = with_api(routes, lambda api: order_service(api).create_quick_order(PHONE, items, ADDRESS))

    body = json.loads(routes.sent("POST", "/api/orders/quick-create/")[0].content)
    assert body["customer_phone"] == PHONE
    assert body["pharmacy_id"] == "7"
    assert body["medicines"][0] == {"medicine_id": "1", "quantity": 2, "prescription_file": None}
    assert body["medicines"][1]["prescription_file"] == "prescriptions/x.jpg"
    assert body["delivery_address"] == {
        "name": "John Doe", "address": "123 Main St", "city": "New Delhi", "pincode": "110001", "landmark": "Near Mall",
    }
    assert order.order_id == "501"
    assert order.pharmacy_id == "7"
    assert order.created_at is not None


def test_no_pharmacy_means_no_order_call():
    routes = Routes({("GET", "/api/pharmacies/nearby/"): httpx.Response(200, json=[])})

    with pytest.raises(NoFulfillmentError) as exc:
        with_api(routes, lambda api: order_service(api).create_quick_order(PHONE, [OrderLine(medicine_id="1")], ADDRESS))

    assert exc.value.pincode == "110001"
    assert routes.sent("POST", "/api/orders/quick-create/") == []


def test_quick_order_is_not_retried():
    routes = Routes({
        ("GET", "/api/pharmacies/nearby/"): httpx.Response(200, json=[{"id": 7}]),
        ("POST", "/api/orders/quick-create/"): httpx.Response(502),
    })

    with pytest.raises(HttpError):
        with_api(routes, lambda api: order_service(api).create_quick_order(PHONE, [OrderLine(medicine_id="1")], ADDRESS))

    assert len(routes.sent("POST", "/api/orders/quick-create/")) == 1


def test_missing_order_fields_are_filled_locally():
    routes = Routes({
        ("GET", "/api/pharmacies/nearby/"): httpx.Response(200, json=[{"id": 7}]),
        ("POST", "/api/orders/quick-create/"): httpx.Response(201, json={"status": "pending"}),
    })

    order = with_api(routes, lambda api: order_service(api).create_quick_order(
        PHONE, [OrderLine(medicine_id="1")], ADDRESS, fallback_total=Decimal("25.50")))

    assert order.order_id.startswith("ORD-")
    assert order.total_amount == Decimal("25.50")
    assert order.customer_phone == PHONE


def test_order_history_newest_first_and_capped():
    history = [
        {"order_id": i, "created_at": f"2024-05-{i:02d}T10:00:00Z", "total_amount": "10"} for i in range(1, 8)
    ]
    routes = Routes({("GET", f"/api/orders/customer/{PHONE}/"): httpx.Response(200, json={"results": history})})

    orders = with_api(routes, lambda api: order_service(api).list_for_customer(PHONE))

    assert [o.order_id for o in orders] == ["7", "6", "5", "4", "3"]


def test_order_history_not_found_means_no_orders():
    routes = Routes({})

    assert with_api(routes, lambda api: order_service(api).list_for_customer(PHONE)) == []


def test_order_history_server_error_propagates():
    routes = Routes({("GET", f"/api/orders/customer/{PHONE}/"): httpx.Response(500)})

    with pytest.raises(HttpError):
        with_api(routes, lambda api: order_service(api).list_for_customer(PHONE))


# --- Prescriptions ---------------------------------------------------------

def test_prescription_written_under_phone_folder(tmp_path):
    store = PrescriptionStore(tmp_path)
    media = MediaDownload(content=b"\x89PNG", size=4, content_type="image/png")

    upload = run(store.save(PHONE, "wamid/../1", media))

    assert upload.path.startswith(f"prescriptions/{PHONE}/prescription_")
    assert upload.path.endswith("_wamid..1.png")
    assert (tmp_path / upload.path).read_bytes() == b"\x89PNG"


def test_extension_for_unknown_type_defaults_to_jpg():
    assert extension_for("image/jpeg; charset=binary") == "jpg"
    assert extension_for("application/octet-stream") == "jpg"
    assert extension_for(None) == "jpg"


# --- WhatsApp client -------------------------------------------------------

def whatsapp_client(api):
    return WhatsAppClient(api, Settings(environ=TEST_ENV))


def test_send_posts_envelope_with_bearer_token():
    routes = Routes({("POST", "/v18.0/12345/messages"): httpx.Response(200, json={"messages": [{"id": "wamid.x"}]})})

    delivered = with_api(routes, lambda api: whatsapp_client(api).send(PHONE, TextMessage(body="Hello")))

    request = routes.requests[0]
    assert delivered is True
    assert request.url.host == "graph.facebook.com"
    assert request.headers["Authorization"] == "Bearer test-token"
    assert json.loads(request.content) == {
        "messaging_product": "whatsapp", "recipient_type": "individual", "to": PHONE,
        "type": "text", "text": {"body": "Hello"},
    }


def test_failed_send_returns_false():
    routes = Routes({("POST", "/v18.0/12345/messages"): httpx.Response(400, json={"error": {"code": 131030}})})

    assert with_api(routes, lambda api: whatsapp_client(api).send(PHONE, TextMessage(body="x"))) is False


def test_media_download_resolves_url_first():
    routes = Routes({
        ("GET", "/v18.0/media-1"): httpx.Response(200, json={"url": "https://cdn.example/m/1", "mime_type": "image/jpeg"}),
        ("GET", "/m/1"): httpx.Response(200, content=b"jpegbytes"),
    })

    media = with_api(routes, lambda api: whatsapp_client(api).download_media("media-1"))

    assert media.content == b"jpegbytes"
    assert media.content_type == "image/jpeg"
    assert routes.requests[1].headers["Authorization"] == "Bearer test-token"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
