import pytest

from orderhub.models.marketplace_models import (
    InventoryJob, InventoryJobStatus, InventoryJobType, Marketplace, MarketplaceItemProductLink,
    MarketplaceOrderItem, MarketplaceOrderPresented, Product, ProductStock, StatusInterno, StockReservation, Storage,
)
from orderhub.services.order_link_service import OrderLinkService
from orderhub.services.presented_order_service import PresentedOrderService


@pytest.fixture
def product(db):
    product = Product(organizations_id="org-1", sku="SKU-INTERNO", name="Camiseta Azul M")
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def storage(db):
    storage = Storage(organizations_id="org-1", name="Principal", is_default=True, active=True)
    db.add(storage)
    db.commit()
    return storage


@pytest.fixture
def presented_ml_order(db, ml_raw_factory):
    raw = ml_raw_factory()
    result = PresentedOrderService(db).process(Marketplace.MERCADO_LIVRE, raw_id=raw.id)
    assert result["ok"] is True
    return raw


def _presented(db, order_id):
    return db.query(MarketplaceOrderPresented).filter(MarketplaceOrderPresented.id == order_id).one()


def test_link_without_storage_enqueues_reserve_job(db, presented_ml_order, product):
    assert _presented(db, presented_ml_order.id).status_interno == StatusInterno.A_VINCULAR

    result = OrderLinkService(db).link_item(presented_ml_order.id, product.id, external_item_id="987")

    assert result["ok"] is True
    assert result["has_unlinked_items"] is False
    assert result["item"]["model_id_externo"] == "987"

    job = db.query(InventoryJob).one()
    assert job.job_type == InventoryJobType.RESERVE
    assert job.status == InventoryJobStatus.PENDING

    presented = _presented(db, presented_ml_order.id)
    assert presented.status_interno == StatusInterno.PENDENTE
    assert presented.linked_products[0]["product_id"] == product.id
    assert presented.linked_products[0]["source"] == "ephemeral"
    item = db.query(MarketplaceOrderItem).filter(MarketplaceOrderItem.id == presented_ml_order.id).one()
    assert item.linked_products == product.id
    assert db.query(MarketplaceItemProductLink).count() == 0


def test_permanent_link_is_saved_and_reserved(db, presented_ml_order, product, storage):
    result = OrderLinkService(db).link_item(presented_ml_order.id, product.id, external_item_id="987", permanent=True)
    assert result["ok"] is True

    link = db.query(MarketplaceItemProductLink).one()
    assert (link.marketplace_item_id, link.variation_id, link.product_id) == ("MLB123", "987", product.id)
    assert link.marketplace_name == Marketplace.MERCADO_LIVRE

    reservation = db.query(StockReservation).one()
    assert reservation.quantity == 2
    stock = db.query(ProductStock).one()
    assert stock.reserved == 2
    assert db.query(InventoryJob).count() == 0
    assert _presented(db, presented_ml_order.id).linked_products[0]["source"] == "permanent"


def test_link_from_a_vincular_requires_stock(db, presented_ml_order, product, storage):
    service = OrderLinkService(db)
    result = service.link_item(presented_ml_order.id, product.id, external_item_id="987", source_card="A_VINCULAR")
    assert result["ok"] is False
    assert result["status_code"] == 400

    db.add(ProductStock(product_id=product.id, storage_id=storage.id, current=5, reserved=0))
    db.commit()
    result = service.link_item(presented_ml_order.id, product.id, external_item_id="987", source_card="a_vincular")
    assert result["ok"] is True
    assert db.query(ProductStock).one().reserved == 2


def test_link_falls_back_to_first_unlinked_row(db, presented_ml_order, product):
    result = OrderLinkService(db).link_item(presented_ml_order.id, product.id, external_item_id="inexistente")
    assert result["ok"] is True
    assert result["item"]["model_id_externo"] == "987"


def test_link_validation_errors(db, presented_ml_order, product):
    service = OrderLinkService(db)
    assert service.link_item(None, product.id, external_item_id="987")["status_code"] == 400
    assert service.link_item(presented_ml_order.id, product.id)["status_code"] == 400
    assert service.link_item("nao-existe", product.id, external_item_id="987")["status_code"] == 404


def test_link_route(client, db, presented_ml_order, product):
    response = client.post("/api/orders/items/link", json={
        "order_id": presented_ml_order.id,
        "product_id": product.id,
        "external_item_id": 987,
    })
    assert response.status_code == 200
    assert response.json()["ok"] is True

    response = client.post("/api/orders/items/link", json={"order_id": presented_ml_order.id})
    assert response.status_code == 400


def _two_item_order(payloads):
    order = payloads.ml_order()
    order["order_items"].append({
        "item": {"id": "MLB456", "title": "Camiseta Verde", "variation_id": 654, "seller_sku": "CAM-VD"},
        "quantity": 1,
        "unit_price": 45.0,
        "full_unit_price": 45.0,
        "sale_fee": 4.0,
        "currency_id": "BRL",
    })
    return order


def test_mixed_links_reserve_every_linked_item(db, ml_raw_factory, payloads, product, storage):
    raw = ml_raw_factory(order=_two_item_order(payloads))
    assert PresentedOrderService(db).process(Marketplace.MERCADO_LIVRE, raw_id=raw.id)["ok"] is True
    service = OrderLinkService(db)

    assert service.link_item(raw.id, product.id, external_item_id="987")["ok"] is True
    assert db.query(StockReservation).one().quantity == 2

    result = service.link_item(raw.id, product.id, external_item_id="654", permanent=True)
    assert result["ok"] is True
    assert result["has_unlinked_items"] is False

    link = db.query(MarketplaceItemProductLink).one()
    assert (link.marketplace_item_id, link.variation_id) == ("MLB456", "654")

    # o reprocessamento feito pelo vínculo não reduz a reserva do item efêmero
    reservation = db.query(StockReservation).one()
    assert reservation.quantity == 3
    assert db.query(ProductStock).one().reserved == 3

    PresentedOrderService(db).process(Marketplace.MERCADO_LIVRE, raw_id=raw.id)
    db.expire_all()
    assert db.query(StockReservation).one().quantity == 3
    assert db.query(ProductStock).one().reserved == 3
    sources = {entry["variation_id"]: entry["source"] for entry in _presented(db, raw.id).linked_products}
    assert sources == {"987": "ephemeral", "654": "permanent"}


def test_reprocess_reserves_permanent_links_for_new_order(db, ml_raw_factory, payloads, product, storage):
    db.add(MarketplaceItemProductLink(organizations_id="org-1", marketplace_name=Marketplace.MERCADO_LIVRE,
                                      marketplace_item_id="MLB456", variation_id="654", product_id=product.id))
    db.commit()
    raw = ml_raw_factory(order=_two_item_order(payloads))

    PresentedOrderService(db).process(Marketplace.MERCADO_LIVRE, raw_id=raw.id)

    reservation = db.query(StockReservation).one()
    assert (reservation.product_id, reservation.quantity) == (product.id, 1)
    assert db.query(ProductStock).one().reserved == 1
