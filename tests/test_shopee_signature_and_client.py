import hashlib
import hmac
from unittest.mock import patch

import pytest
import requests

from orderhub.services.shopee_client import ShopeeClient, needs_token_refresh
from orderhub.services.token_manager import TokenManager
from orderhub.utils import shopee_signature
from orderhub.utils.errors import MarketplaceAPIError


def _expected_sign(key, base):
    return hmac.new(key.encode(), base.encode(), hashlib.sha256).hexdigest().upper()


def test_public_path_signature_has_no_shop_fields():
    params = shopee_signature.signed_params("1001", "chave", "/api/v2/shop/auth_partner", 1700000000)
    assert params == {
        "partner_id": 1001,
        "timestamp": 1700000000,
        "sign": _expected_sign("chave", "1001/api/v2/shop/auth_partner1700000000"),
    }


def test_shop_level_signature_includes_token_and_shop_id():
    params = shopee_signature.signed_params("1001", "chave", "/api/v2/order/get_order_list", 1700000000,
                                            access_token="tok", shop_id="555")
    assert params["access_token"] == "tok"
    assert params["shop_id"] == 555
    assert params["sign"] == _expected_sign("chave", "1001/api/v2/order/get_order_list1700000000tok555")


@pytest.mark.parametrize("status_code, payload, expected", [
    (401, {}, True),
    (403, None, True),
    (200, {"error": "invalid_acceess_token", "message": "Invalid access_token."}, True),
    (200, {"error": "", "message": ""}, False),
    (500, "erro", False),
])
def test_needs_token_refresh(status_code, payload, expected):
    assert needs_token_refresh(status_code, payload) is expected


def test_call_falls_back_to_next_host(db, shopee_integration, fake_response):
    ok = fake_response(200, {"error": "", "response": {"order_list": []}})
    with patch("orderhub.services.shopee_client.requests.request",
               side_effect=[requests.ConnectionError("down"), ok]) as request:
        payload = ShopeeClient(db, shopee_integration).get("/api/v2/order/get_order_list", params={"page_size": 10})

    assert payload["response"] == {"order_list": []}
    assert request.call_count == 2
    first_url = request.call_args_list[0].args[1]
    second_url = request.call_args_list[1].args[1]
    assert first_url.startswith("https://partner.shopeemobile.com")
    assert second_url.startswith("https://openplatform.shopee.com.br")
    params = request.call_args_list[1].kwargs["params"]
    assert params["page_size"] == 10
    assert params["shop_id"] == 555
    assert params["access_token"] == "access-token"


def test_call_refreshes_token_once_on_invalid_token(db, shopee_integration, fake_response):
    rejected = fake_response(200, {"error": "invalid_access_token", "message": "Invalid access_token."})
    ok = fake_response(200, {"error": "", "response": {"ok": True}})
    with patch("orderhub.services.shopee_client.requests.request", side_effect=[rejected, ok]) as request, \
            patch.object(TokenManager, "refresh_shopee_token", return_value="novo-token") as refresh:
        payload = ShopeeClient(db, shopee_integration).post("/api/v2/logistics/ship_order", {"order_sn": "SN1"})

    assert payload["response"] == {"ok": True}
    refresh.assert_called_once()
    # token recusado não tenta o segundo host antes de renovar
    assert request.call_count == 2
    assert request.call_args_list[1].kwargs["params"]["access_token"] == "novo-token"
    assert request.call_args_list[1].kwargs["json"] == {"order_sn": "SN1"}


def test_call_raises_marketplace_error(db, shopee_integration, fake_response):
    error = fake_response(200, {"error": "error_param", "message": "order_sn inválido"})
    with patch("orderhub.services.shopee_client.requests.request", return_value=error):
        with pytest.raises(MarketplaceAPIError) as exc_info:
            ShopeeClient(db, shopee_integration).get("/api/v2/order/get_order_detail")

    assert exc_info.value.error_code == "error_param"
    assert exc_info.value.payload["message"] == "order_sn inválido"
