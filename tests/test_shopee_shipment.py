from unittest.mock import MagicMock, patch

import pytest

from orderhub.models.marketplace_models import Marketplace, MarketplaceOrderPresented, MarketplaceOrderRaw
from orderhub.services.presented_order_service import PresentedOrderService
from orderhub.services.shopee_shipment_service import (
    PACKAGE_NUMBER_NOT_NEEDED, ShopeeShipmentService, label_columns, pick_tracking_number, plan_shipment,
)

DROPOFF_PARAMETER = {"response": {"info_needed": {"dropoff": [], "pickup": ["address_id"]}}}


def _shipping_api(fake_response, ship_order=None, tracking=None, shipping_parameter=None):
    """requests.request falso para os endpoints de logística"""
    def fake_request(method, url, params=None, json=None, timeout=None):
        if url.endswith("/logistics/ship_order"):
            if ship_order:
                return ship_order(json)
            return fake_response(200, {"error": "", "message": "", "response": {}})
        if url.endswith("/logistics/get_tracking_number"):
            return fake_response(200, tracking or {"response": {"tracking_number": "BR999"}})
        if url.endswith("/logistics/get_shipping_parameter"):
            if shipping_parameter is None:
                return fake_response(404, {"error": "not_found"})
            return fake_response(200, shipping_parameter)
        if url.endswith("/logistics/get_shipping_document_parameter"):
            return fake_response(200, {"response": {"document_type": "NORMAL_AIR_WAYBILL", "file_type": "pdf"}})
        if url.endswith("/logistics/create_shipping_document"):
            return fake_response(200, {"response": {"content_base64": "JVBERi0xLjQ="}})
        return fake_response(404, {"error": "not_found"})
    return MagicMock(side_effect=fake_request)


def _calls_to(api, suffix):
    return [c for c in api.call_args_list if c.args[1].endswith(suffix)]


@pytest.fixture
def presented_shopee_order(db, shopee_integration, shopee_raw_factory):
    def factory(detail=None, shipping_parameter=DROPOFF_PARAMETER):
        extra = {"shipping_parameter": shipping_parameter} if shipping_parameter is not None else {}
        raw = shopee_raw_factory(detail=detail, **extra)
        assert PresentedOrderService(db).process(Marketplace.SHOPEE, raw_id=raw.id)["ok"] is True
        return raw
    return factory


# === FUNÇÕES PURAS ===

def test_plan_shipment_dropoff():
    data = {
        "shipping_parameter": DROPOFF_PARAMETER,
        "order_detail": {"package_list": [{"package_number": "P1"}]},
    }
    plan = plan_shipment("SN1", data)
    assert plan["mode"] == "dropoff"
    assert plan["body"] == {"order_sn": "SN1", "dropoff": {}}
    assert plan["package_number"] == "P1"
    assert plan["is_split_order"] is False


def test_plan_shipment_pickup_for_split_order():
    data = {
        "shipping_parameter": {"response": {
            "info_needed": {"dropoff": ["branch_id"], "pickup": ["address_id", "pickup_time_id"]},
            "pickup": {"address_list": [{"address_id": 12, "time_slot_list": [{"pickup_time_id": "slot-1"}]}]},
        }},
        "order_detail": {"package_list": [{"package_number": "P1"}, {"package_number": "P2"}]},
    }
    plan = plan_shipment("SN1", data)
    assert plan["mode"] == "pickup"
    assert plan["body"] == {
        "order_sn": "SN1",
        "package_number": "P1",
        "pickup": {"address_id": 12, "pickup_time_id": "slot-1"},
    }


def test_plan_shipment_without_known_mode():
    data = {"shipping_parameter": {"info_needed": {"dropoff": ["branch_id"]}}}
    assert plan_shipment("SN1", data)["mode"] is None


def test_pick_tracking_number_prefers_last_mile():
    payload = {"response": {"first_mile_tracking_number": "FM1", "last_mile_tracking_number": "LM1",
                            "tracking_number": "T1", "plp_number": "PLP"}}
    numbers = pick_tracking_number(payload)
    assert numbers["tracking_number"] == "LM1"
    assert numbers["plp_number"] == "PLP"
    assert pick_tracking_number({"response": {"first_mile_tracking_number": "FM1"}})["tracking_number"] == "FM1"
    assert pick_tracking_number({"tracking_number": "T1"})["tracking_number"] == "T1"
    assert pick_tracking_number({})["tracking_number"] is None


def test_label_columns():
    columns = label_columns({"response": {"content_base64": "QUJDRA=="}}, "PDF", "2024-01-01T00:00:00Z")
    assert columns["label_cached"] is True
    assert columns["label_content_type"] == "application/pdf"
    assert columns["label_pdf_base64"] == "QUJDRA=="
    assert columns["label_size_bytes"] == 6

    zpl = label_columns({"zpl_base64": "XlhB"}, "zpl2", "2024-01-01T00:00:00Z")
    assert zpl["label_content_type"] == "text/plain"
    assert zpl["label_zpl2_base64"] == "XlhB"
    assert label_columns({"response": {}}, "pdf", "x") == {}


# === ARRANGE ===

def test_arrange_validations(db, shopee_integration):
    service = ShopeeShipmentService(db)
    assert service.arrange({})["status_code"] == 400
    assert service.arrange({"organizationId": "org-1", "orders": ["nao-existe"]})["status_code"] == 400


def test_arrange_without_integration(db, shopee_raw_factory):
    raw = shopee_raw_factory(organization_id="org-2", shipping_parameter=DROPOFF_PARAMETER)
    PresentedOrderService(db).process(Marketplace.SHOPEE, raw_id=raw.id)
    result = ShopeeShipmentService(db).arrange({"organizationId": "org-2", "orderSn": raw.marketplace_order_id})
    assert result["status_code"] == 404


def test_arrange_dropoff_with_tracking_and_label(db, presented_shopee_order, fake_response):
    raw = presented_shopee_order()
    api = _shipping_api(fake_response)
    with patch("orderhub.services.shopee_client.requests.request", api):
        result = ShopeeShipmentService(db).arrange({"organizationId": "org-1", "orders": ["240101ABC"]})

    assert result["ok"] is True
    assert result["planned"] == [{"order_sn": "240101ABC", "mode": "dropoff", "planned": True,
                                  "reason": "ship_order:ok;tracking:BR999"}]

    ship_call = _calls_to(api, "/logistics/ship_order")[0]
    assert ship_call.args[0] == "POST"
    assert ship_call.kwargs["json"] == {"order_sn": "240101ABC", "dropoff": {}}
    tracking_call = _calls_to(api, "/logistics/get_tracking_number")[0]
    assert "package_number" not in tracking_call.kwargs["params"]
    document_call = _calls_to(api, "/logistics/create_shipping_document")[0]
    assert document_call.kwargs["json"]["document_type"] == "NORMAL_AIR_WAYBILL"
    assert document_call.kwargs["json"]["tracking_number"] == "BR999"

    presented = db.query(MarketplaceOrderPresented).filter(MarketplaceOrderPresented.id == raw.id).one()
    assert presented.tracking_number == "BR999"
    assert presented.ship_order_planned_at is not None
    assert presented.label_cached is True
    assert presented.label_content_type == "application/pdf"
    info = presented.shipping_info
    assert info["mode"] == "dropoff"
    assert info["ship_order_success"] is True
    assert info["label_success"] is True
    assert [e["stage"] for e in info["log_events"]] == ["plan", "ship_order", "tracking", "label"]


def test_arrange_retries_without_package_number(db, presented_shopee_order, payloads, fake_response):
    detail = payloads.shopee_detail()
    detail["package_list"] = [{"package_number": "PKG1"}, {"package_number": "PKG2"}]
    raw = presented_shopee_order(detail=detail)

    def ship_order(body):
        if "package_number" in body:
            return fake_response(200, {"error": PACKAGE_NUMBER_NOT_NEEDED, "message": "package number not needed"})
        return fake_response(200, {"error": "", "response": {}})

    api = _shipping_api(fake_response, ship_order=ship_order,
                        tracking={"response": {"first_mile_tracking_number": "FM1",
                                               "last_mile_tracking_number": "LM1"}})
    with patch("orderhub.services.shopee_client.requests.request", api):
        result = ShopeeShipmentService(db).arrange({"organizationId": "org-1", "presentedIds": [raw.id]})

    assert result["planned"][0]["reason"] == "ship_order:ok;tracking:LM1"
    ship_calls = _calls_to(api, "/logistics/ship_order")
    # os dois hosts recusam o package_number, depois a repetição sem ele passa
    assert len(ship_calls) == 3
    assert "package_number" not in ship_calls[-1].kwargs["json"]
    tracking_call = _calls_to(api, "/logistics/get_tracking_number")[0]
    assert tracking_call.kwargs["params"]["package_number"] == "PKG1"

    presented = db.query(MarketplaceOrderPresented).filter(MarketplaceOrderPresented.id == raw.id).one()
    assert presented.shipping_info["ship_order_request"] == {"order_sn": "240101ABC", "dropoff": {}}
    assert presented.shipping_info["tracking_numbers"]["first_mile_tracking_number"] == "FM1"


def test_arrange_ship_order_error(db, presented_shopee_order, fake_response):
    presented_shopee_order()
    api = _shipping_api(fake_response,
                        ship_order=lambda body: fake_response(400, {"error": "logistics.invalid", "message": "bad"}),
                        tracking={"response": {}})
    with patch("orderhub.services.shopee_client.requests.request", api):
        result = ShopeeShipmentService(db).arrange({"organizationId": "org-1", "orderSn": "240101ABC"})

    assert result["planned"][0]["reason"] == "ship_order:error"
    presented = db.query(MarketplaceOrderPresented).one()
    assert presented.shipping_info["ship_order_error_code"] == "logistics.invalid"
    assert presented.shipping_info["ship_order_error_message"] == "bad"
    assert not _calls_to(api, "/logistics/create_shipping_document")


def test_arrange_fetches_missing_shipping_parameter(db, presented_shopee_order, fake_response):
    raw = presented_shopee_order(shipping_parameter=None)
    api = _shipping_api(fake_response, shipping_parameter=DROPOFF_PARAMETER)
    with patch("orderhub.services.shopee_client.requests.request", api):
        result = ShopeeShipmentService(db).arrange({"organizationId": "org-1", "orders": ["240101ABC"]})

    assert result["planned"][0]["mode"] == "dropoff"
    assert len(_calls_to(api, "/logistics/get_shipping_parameter")) == 1
    db.expire_all()
    stored = db.query(MarketplaceOrderRaw).filter(MarketplaceOrderRaw.id == raw.id).one()
    assert stored.data["shipping_parameter"] == DROPOFF_PARAMETER


def test_arrange_missing_mode(db, presented_shopee_order, fake_response):
    presented_shopee_order(shipping_parameter={"response": {"info_needed": {"dropoff": ["branch_id"]}}})
    api = _shipping_api(fake_response)
    with patch("orderhub.services.shopee_client.requests.request", api):
        result = ShopeeShipmentService(db).arrange({"organizationId": "org-1", "orders": ["240101ABC"]})

    assert result["planned"][0] == {"order_sn": "240101ABC", "mode": None, "planned": False, "reason": "missing_mode"}
    assert not _calls_to(api, "/logistics/ship_order")


def test_arrange_route(client, db, presented_shopee_order, fake_response):
    presented_shopee_order()
    with patch("orderhub.services.shopee_client.requests.request", _shipping_api(fake_response)):
        response = client.post("/api/shopee/orders/arrange-shipment",
                               json={"organizationId": "org-1", "orders": ["240101ABC"]})
    assert response.status_code == 200
    assert response.json()["planned"][0]["planned"] is True
