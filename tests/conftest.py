"""
Fixtures compartilhadas: banco SQLite em memória, cliente HTTP e integrações de exemplo
"""
import json
import os
import tempfile
from datetime import timedelta

# Configuração precisa existir antes de importar o pacote
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="orderhub-logs-")
os.environ["TOKENS_ENCRYPTION_KEY"] = "0123456789abcdef" * 4
os.environ["ML_CLIENT_ID"] = "ml-client-id"
os.environ["ML_CLIENT_SECRET"] = "ml-client-secret"
os.environ["SHOPEE_PARTNER_ID"] = "1001"
os.environ["SHOPEE_PARTNER_KEY"] = "shopee-partner-key"
os.environ["SHOPEE_ENV"] = "production"
os.environ["SITE_URL"] = "https://app.example.com"
os.environ.pop("INTERNAL_API_KEY", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from orderhub.config.database import Base, SessionLocal, engine, get_db  # noqa: E402
from orderhub.main import app  # noqa: E402
from orderhub.models.marketplace_models import Marketplace, MarketplaceIntegration, MarketplaceOrderRaw  # noqa: E402
from orderhub.services.token_manager import TokenManager  # noqa: E402
from orderhub.utils.payload import parse_datetime, utcnow  # noqa: E402


class FakeResponse:
    """Resposta mínima no formato de requests.Response"""

    def __init__(self, status_code=200, json_data=None, content=None, text=None):
        self.status_code = status_code
        self._json = json_data
        if content is None:
            content = json.dumps(json_data).encode("utf-8") if json_data is not None else b""
        self.content = content
        self.text = text if text is not None else content.decode("utf-8", "ignore")

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_integration(db, marketplace_name, external_id, organization_id="org-1", config=None,
                        access_token="access-token", refresh_token="refresh-token", expires_in=3600):
    integration = MarketplaceIntegration(
        organizations_id=organization_id,
        marketplace_name=marketplace_name,
        meli_user_id=external_id,
        config=config or {},
        enabled=True,
    )
    db.add(integration)
    manager = TokenManager(db)
    integration.access_token = manager.encrypt(access_token) if access_token else None
    integration.refresh_token = manager.encrypt(refresh_token) if refresh_token else None
    integration.expires_at = utcnow() + timedelta(seconds=expires_in)
    db.commit()
    db.refresh(integration)
    return integration


@pytest.fixture
def ml_integration(db):
    return _create_integration(db, Marketplace.MERCADO_LIVRE, "999")


@pytest.fixture
def shopee_integration(db):
    return _create_integration(db, Marketplace.SHOPEE, "555", config={"shopee_shop_id": "555"})


@pytest.fixture
def make_integration(db):
    def factory(marketplace_name, external_id, **kwargs):
        return _create_integration(db, marketplace_name, external_id, **kwargs)
    return factory


# === PAYLOADS DE EXEMPLO ===

def build_ml_order(order_id=2000001, status="paid", payment_status="approved"):
    return {
        "id": order_id,
        "status": status,
        "status_detail": None,
        "date_created": "2024-01-10T09:55:00.000-03:00",
        "date_closed": "2024-01-10T09:56:00.000-03:00",
        "last_updated": "2024-01-10T10:00:00.000-03:00",
        "total_amount": 100.0,
        "pack_id": None,
        "buyer": {"id": 42, "nickname": "COMPRADOR1", "first_name": "Ana", "last_name": "Silva"},
        "seller": {"id": 999},
        "order_items": [{
            "item": {
                "id": "MLB123",
                "title": "Camiseta Azul",
                "variation_id": 987,
                "seller_sku": "CAM-AZ",
                "category_id": "MLB1234",
                "variation_attributes": [{"name": "Cor", "value_name": "Azul"}],
                "pictures": [{"secure_url": "https://http2.mlstatic.com/camiseta.jpg"}],
            },
            "quantity": 2,
            "unit_price": 50.0,
            "full_unit_price": 60.0,
            "sale_fee": 7.5,
            "listing_type_id": "gold_special",
            "currency_id": "BRL",
        }],
        "payments": [{
            "id": 555001,
            "status": payment_status,
            "total_paid_amount": 110.0,
            "marketplace_fee": 7.5,
            "shipping_cost": 10.0,
            "date_created": "2024-01-10T09:55:30.000-03:00",
            "date_approved": "2024-01-10T09:56:00.000-03:00",
        }],
        "shipping": {
            "id": 44,
            "receiver_address": {
                "city": {"name": "São Paulo"},
                "state": {"id": "BR-SP", "name": "São Paulo"},
            },
        },
        "tags": ["paid"],
    }


def build_ml_shipment(status="pending", substatus=None, logistic_type="cross_docking"):
    return {
        "id": 44,
        "status": status,
        "substatus": substatus,
        "logistic": {"type": logistic_type},
        "destination": {"shipping_address": {
            "address_line": "Rua das Flores 123",
            "street_name": "Rua das Flores",
            "street_number": "123",
            "zip_code": "01234-567",
            "neighborhood": {"name": "Centro"},
        }},
        "shipping_option": {"name": "Normal"},
    }


def build_shopee_detail(order_sn="240101ABC", status="READY_TO_SHIP", invoice_status="pending"):
    return {
        "order_sn": order_sn,
        "order_status": status,
        "buyer_username": "comprador_shopee",
        "buyer_user_id": 777,
        "buyer_cpf_id": "12345678901",
        "create_time": 1704100000,
        "update_time": 1704103600,
        "currency": "BRL",
        "shipping_carrier": "Shopee Xpress",
        "recipient_address": {
            "name": "Maria",
            "city": "Curitiba",
            "region": "Paraná",
            "zipcode": "80000-000",
            "full_address": "Rua XV de Novembro, 500 - Centro - Curitiba 80000-000",
        },
        "item_list": [{
            "item_id": 111,
            "item_name": "Caneca",
            "model_id": 222,
            "model_name": "Branca",
            "model_sku": "CAN-BR",
            "model_quantity_purchased": 2,
            "item_price": 39.95,
            "original_price": 49.9,
            "model_discounted_price": 39.95,
            "image_info": {"image_url": "https://cf.shopee.com.br/caneca.jpg"},
        }],
        "package_list": [{"package_number": "PKG1", "logistics_status": "LOGISTICS_READY"}],
        "invoice_data": {"invoice_status": invoice_status},
    }


def build_shopee_escrow():
    return {"response": {"order_income": {"commission_fee": 5.0, "service_fee": 3.0, "order_selling_price": 79.9}}}


@pytest.fixture
def payloads():
    """Construtores de payloads de exemplo dos marketplaces"""
    class Payloads:
        ml_order = staticmethod(build_ml_order)
        ml_shipment = staticmethod(build_ml_shipment)
        shopee_detail = staticmethod(build_shopee_detail)
        shopee_escrow = staticmethod(build_shopee_escrow)
    return Payloads


@pytest.fixture
def ml_raw_factory(db):
    def factory(order=None, shipment=None, organization_id="org-1", company_id=None, **fields):
        order = order or build_ml_order()
        shipment = shipment or build_ml_shipment()
        raw = MarketplaceOrderRaw(
            organizations_id=organization_id,
            company_id=company_id,
            marketplace_name=Marketplace.MERCADO_LIVRE,
            marketplace_order_id=str(order["id"]),
            status=order.get("status"),
            order_items=order.get("order_items"),
            buyer=order.get("buyer"),
            payments=order.get("payments"),
            shipments=[shipment],
            billing_info={"receiver": {"document": {"id": "CPF", "value": "12345678901"}, "name": "Ana Silva"}},
            data=order,
            last_updated=parse_datetime(order.get("last_updated")),
        )
        for key, value in fields.items():
            setattr(raw, key, value)
        db.add(raw)
        db.commit()
        db.refresh(raw)
        return raw
    return factory


@pytest.fixture
def shopee_raw_factory(db):
    def factory(detail=None, organization_id="org-1", company_id=None, **extra):
        detail = detail or build_shopee_detail()
        data = {
            "order_list_item": {"order_sn": detail["order_sn"], "order_status": detail["order_status"]},
            "order_detail": detail,
            "escrow_detail": build_shopee_escrow(),
        }
        data.update(extra)
        raw = MarketplaceOrderRaw(
            organizations_id=organization_id,
            company_id=company_id,
            marketplace_name=Marketplace.SHOPEE,
            marketplace_order_id=detail["order_sn"],
            status=detail["order_status"],
            order_items=detail.get("item_list"),
            data=data,
        )
        db.add(raw)
        db.commit()
        db.refresh(raw)
        return raw
    return factory
