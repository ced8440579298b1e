from datetime import timedelta
from unittest.mock import patch

from orderhub.models.marketplace_models import Marketplace, MarketplaceApp
from orderhub.services.mercadolibre_client import MercadoLivreClient
from orderhub.services.token_manager import TokenManager
from orderhub.utils.payload import utcnow


def test_tokens_are_encrypted_at_rest(db, ml_integration):
    assert ml_integration.access_token.startswith("enc:gcm:")
    assert ml_integration.refresh_token.startswith("enc:gcm:")
    assert TokenManager(db).get_access_token(ml_integration) == "access-token"


def test_legacy_plaintext_token_is_still_usable(db, ml_integration):
    ml_integration.access_token = "APP_USR-legacy"
    db.commit()
    assert TokenManager(db).get_access_token(ml_integration) == "APP_USR-legacy"


def test_app_credentials_prefer_apps_table(db):
    manager = TokenManager(db)
    assert manager.get_app_credentials(Marketplace.MERCADO_LIVRE)["client_id"] == "ml-client-id"

    db.add(MarketplaceApp(name=Marketplace.MERCADO_LIVRE, client_id="app-id", client_secret="app-secret"))
    db.commit()
    credentials = manager.get_app_credentials(Marketplace.MERCADO_LIVRE)
    assert credentials["client_id"] == "app-id"
    assert credentials["client_secret"] == "app-secret"


def test_expired_ml_token_is_refreshed_silently(db, make_integration, fake_response):
    integration = make_integration(Marketplace.MERCADO_LIVRE, "999", access_token="velho",
                                   refresh_token="r1", expires_in=-60)
    response = fake_response(200, {"access_token": "novo", "refresh_token": "r2", "expires_in": 21600, "user_id": 123})
    with patch("orderhub.services.token_manager.requests.post", return_value=response) as post:
        token = TokenManager(db).get_valid_ml_token(integration)

    assert token == "novo"
    sent = post.call_args.kwargs["data"]
    assert sent["grant_type"] == "refresh_token"
    assert sent["refresh_token"] == "r1"

    db.refresh(integration)
    manager = TokenManager(db)
    assert manager.get_access_token(integration) == "novo"
    assert manager.decrypt(integration.refresh_token) == "r2"
    assert integration.meli_user_id == "123"
    assert integration.expires_at > utcnow() + timedelta(hours=5)


def test_failed_ml_refresh_returns_none(db, make_integration, fake_response):
    integration = make_integration(Marketplace.MERCADO_LIVRE, "999", expires_in=-60)
    with patch("orderhub.services.token_manager.requests.post",
               return_value=fake_response(400, {"error": "invalid_grant"})):
        assert TokenManager(db).refresh_ml_token(integration) is None


def test_shopee_refresh_tries_each_host(db, shopee_integration, fake_response):
    responses = [
        fake_response(500, {"error": "error_server", "message": "falha"}),
        fake_response(200, {"access_token": "s-novo", "refresh_token": "s-r2", "expire_in": 14400, "error": ""}),
    ]
    with patch("orderhub.services.token_manager.requests.post", side_effect=responses) as post:
        token = TokenManager(db).refresh_shopee_token(shopee_integration)

    assert token == "s-novo"
    assert post.call_count == 2
    body = post.call_args.kwargs["json"]
    assert body == {"shop_id": 555, "refresh_token": "refresh-token", "partner_id": 1001}
    assert "sign" in post.call_args.kwargs["params"]
    assert TokenManager(db).decrypt(shopee_integration.refresh_token) == "s-r2"


def test_ml_client_retries_once_after_401(db, ml_integration, fake_response):
    responses = [fake_response(401, {"message": "invalid_token"}), fake_response(200, {"id": 1})]
    with patch("orderhub.services.mercadolibre_client.requests.get", side_effect=responses) as get, \
            patch.object(TokenManager, "refresh_ml_token", return_value="renovado"):
        payload = MercadoLivreClient(db, ml_integration).get_json("/orders/1")

    assert payload == {"id": 1}
    assert get.call_args_list[0].kwargs["headers"]["Authorization"] == "Bearer access-token"
    assert get.call_args_list[1].kwargs["headers"]["Authorization"] == "Bearer renovado"
