from orderhub.config.settings import settings


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["scheduler"] is False


def test_internal_key_is_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "internal_api_key", "segredo")

    response = client.post("/api/orders/inventory-jobs/run", json={})
    assert response.status_code == 401

    response = client.post("/api/orders/inventory-jobs/run", json={}, headers={"X-Internal-Key": "errado"})
    assert response.status_code == 401

    response = client.post("/api/orders/inventory-jobs/run", json={}, headers={"X-Internal-Key": "segredo"})
    assert response.status_code == 200


def test_webhooks_and_callbacks_skip_internal_key(client, monkeypatch):
    monkeypatch.setattr(settings, "internal_api_key", "segredo")
    assert client.post("/api/shopee/webhook", json={}).status_code == 200
    assert client.post("/api/mercadolivre/webhook", json={}).status_code == 400
    assert client.get("/api/shopee/oauth/callback").status_code == 400


def test_service_errors_become_http_status(client):
    assert client.post("/api/mercadolivre/orders/sync", json={}).status_code == 400
    assert client.post("/api/mercadolivre/orders/sync", json={"organizationId": "org-x"}).status_code == 404
    assert client.post("/api/mercadolivre/items/sync", json={}).status_code == 400
    assert client.post("/api/shopee/orders/sync", json={"organizationId": "org-x"}).status_code == 404
    assert client.post("/api/mercadolivre/oauth/start", json={}).status_code == 400
    assert client.post("/api/shopee/oauth/refresh", json={"organizationId": "org-x"}).status_code == 404


def test_invalid_json_body_is_treated_as_empty(client):
    response = client.post("/api/shopee/orders/arrange-shipment", content=b"{invalido",
                           headers={"content-type": "application/json"})
    assert response.status_code == 400
    assert response.json()["error"] == "Missing organizationId"


def test_oauth_start_routes(client):
    response = client.post("/api/mercadolivre/oauth/start", json={"organizationId": "org-1"})
    assert response.status_code == 200
    assert response.json()["authorization_url"].startswith("https://auth.mercadolivre.com.br/authorization?")

    response = client.post("/api/shopee/oauth/start", json={"organizationId": "org-1"})
    assert response.status_code == 200
    assert "/api/v2/shop/auth_partner?" in response.json()["authorization_url"]


def test_process_presented_routes(client, db, ml_raw_factory, shopee_raw_factory):
    ml_raw = ml_raw_factory()
    response = client.post("/api/mercadolivre/orders/process-presented",
                           json={"order_id": 2000001, "organizationId": "org-1"},
                           headers={"x-request-id": "req-123"})
    assert response.status_code == 200
    assert response.json()["raw_id"] == ml_raw.id
    assert response.json()["correlationId"] == "req-123"

    shopee_raw = shopee_raw_factory()
    response = client.post("/api/shopee/orders/process-presented", json={"order_sn": "240101ABC"})
    assert response.status_code == 200
    assert response.json()["raw_id"] == shopee_raw.id

    response = client.post("/api/shopee/orders/process-presented", json={"raw_id": ml_raw.id})
    assert response.status_code == 400
