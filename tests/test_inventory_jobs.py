from datetime import timedelta

import pytest

from orderhub.models.marketplace_models import (
    InventoryJob, InventoryJobStatus, InventoryJobType, MarketplaceOrderItem, MarketplaceOrderPresented,
    ProductStock, ReservationStatus, StockReservation, Storage,
)
from orderhub.services.inventory_service import InventoryService
from orderhub.utils.payload import utcnow


@pytest.fixture
def storage(db):
    storage = Storage(organizations_id="org-1", name="Principal", is_default=True, active=True)
    db.add(storage)
    db.commit()
    return storage


@pytest.fixture
def linked_order(db):
    """Pedido apresentado com uma linha vinculada ao produto prod-1 (3 unidades)"""
    db.add(MarketplaceOrderPresented(id="order-1", organizations_id="org-1", marketplace="mercado_livre",
                                     marketplace_order_id="2000001"))
    db.add(MarketplaceOrderItem(id="order-1", model_id_externo="987", quantity=3, linked_products="prod-1"))
    db.commit()
    return "order-1"


def test_reserve_is_idempotent_and_adjusts_quantity(db, storage):
    service = InventoryService(db)
    service.reserve_for_order("order-1", [{"product_id": "prod-1", "quantity": 2}], storage.id)
    service.reserve_for_order("order-1", [{"product_id": "prod-1", "quantity": 2}], storage.id)
    assert db.query(StockReservation).one().quantity == 2
    assert db.query(ProductStock).one().reserved == 2

    service.reserve_for_order("order-1", [{"product_id": "prod-1", "quantity": 5}], storage.id)
    assert db.query(StockReservation).one().quantity == 5
    stock = db.query(ProductStock).one()
    assert stock.reserved == 5
    # reserva sem saldo deixa o disponível negativo
    assert stock.available == -5


def test_consume_and_refund(db, storage):
    db.add(ProductStock(product_id="prod-1", storage_id=storage.id, current=10, reserved=0))
    db.commit()
    service = InventoryService(db)
    service.reserve_for_order("order-1", [{"product_id": "prod-1", "quantity": 3}], storage.id)

    assert service.consume_order("order-1")["consumed_items"] == 1
    stock = db.query(ProductStock).one()
    assert (stock.current, stock.reserved) == (7, 0)
    assert db.query(StockReservation).one().status == ReservationStatus.CONSUMED

    # reserva consumida não é reajustada
    service.reserve_for_order("order-1", [{"product_id": "prod-1", "quantity": 9}], storage.id)
    assert db.query(StockReservation).one().quantity == 3

    assert service.refund_order("order-1")["refunded_items"] == 1
    stock = db.query(ProductStock).one()
    assert (stock.current, stock.reserved) == (10, 0)
    assert db.query(StockReservation).one().status == ReservationStatus.REFUNDED


def test_refund_releases_open_reservation(db, storage):
    service = InventoryService(db)
    service.reserve_for_order("order-1", [{"product_id": "prod-1", "quantity": 2}], storage.id)
    service.refund_order("order-1")
    assert db.query(ProductStock).one().reserved == 0


def test_available_stock_by_company(db, storage):
    db.add_all([
        ProductStock(product_id="prod-1", storage_id=storage.id, company_id=None, current=4, reserved=1),
        ProductStock(product_id="prod-1", storage_id="outro", company_id="comp-1", current=10, reserved=0),
    ])
    db.commit()
    service = InventoryService(db)
    assert service.available_stock("prod-1") == 3
    assert service.available_stock("prod-1", "comp-1") == 13
    assert service.available_stock("prod-x") == 0


def test_linked_quantities_groups_by_product(db, linked_order):
    db.add(MarketplaceOrderItem(id=linked_order, model_id_externo="988", quantity=1, linked_products="prod-1"))
    db.add(MarketplaceOrderItem(id=linked_order, model_id_externo="989", quantity=2, linked_products=None))
    db.commit()
    assert InventoryService(db).linked_quantities(linked_order) == [{"product_id": "prod-1", "quantity": 4}]


def test_worker_runs_reserve_job(db, storage, linked_order):
    service = InventoryService(db)
    service.enqueue(linked_order, InventoryJobType.RESERVE)

    result = service.run_jobs()

    assert result["processed"] == 1
    assert result["results"][0]["status"] == "done"
    job = db.query(InventoryJob).one()
    assert job.status == InventoryJobStatus.DONE
    assert job.attempts == 1
    assert db.query(StockReservation).one().quantity == 3


def test_worker_runs_consume_and_refund_jobs(db, storage, linked_order):
    service = InventoryService(db)
    service.reserve_for_order(linked_order, service.linked_quantities(linked_order), storage.id)
    service.enqueue(linked_order, InventoryJobType.CONSUME)
    service.run_jobs(order_id=linked_order)
    assert db.query(StockReservation).one().status == ReservationStatus.CONSUMED

    service.enqueue(linked_order, InventoryJobType.REFUND)
    service.run_jobs(order_id=linked_order)
    assert db.query(StockReservation).one().status == ReservationStatus.REFUNDED


@pytest.mark.parametrize("setup, reason, delay", [
    ("missing_order", "order_not_found", 10),
    ("no_organization", "organization_not_found", 60),
    ("no_storage", "default_storage_not_found", 120),
])
def test_worker_failure_backoff(db, setup, reason, delay):
    if setup == "no_organization":
        db.add(MarketplaceOrderPresented(id="order-1", organizations_id=None))
    elif setup == "no_storage":
        db.add(MarketplaceOrderPresented(id="order-1", organizations_id="org-1"))
    db.commit()

    service = InventoryService(db)
    service.enqueue("order-1", InventoryJobType.RESERVE)
    before = utcnow()
    result = service.run_jobs()

    entry = result["results"][0]
    assert entry["status"] == "failed"
    assert entry["error"] == reason
    assert entry["retry_in_seconds"] == delay
    job = db.query(InventoryJob).one()
    assert job.status == InventoryJobStatus.FAILED
    assert job.next_attempt_at >= before + timedelta(seconds=delay - 1)

    # backoff ainda não venceu
    assert service.run_jobs()["processed"] == 0


def test_order_not_found_backoff_grows_with_attempts(db):
    service = InventoryService(db)
    job = service.enqueue("order-x", InventoryJobType.RESERVE, status=InventoryJobStatus.FAILED)
    job.attempts = 4
    job.next_attempt_at = utcnow() - timedelta(seconds=1)
    db.commit()

    result = service.run_jobs()
    assert result["results"][0]["retry_in_seconds"] == 50


def test_failed_job_due_is_retried(db, storage, linked_order):
    service = InventoryService(db)
    job = service.enqueue(linked_order, InventoryJobType.RESERVE, status=InventoryJobStatus.FAILED, error_log="boom")
    assert job.next_attempt_at is not None

    result = service.run_jobs()
    assert result["processed"] == 1
    job = db.query(InventoryJob).one()
    assert job.status == InventoryJobStatus.DONE
    assert job.error_log is None


def test_run_jobs_limit_is_clamped(db):
    service = InventoryService(db)
    for i in range(12):
        service.enqueue(f"missing-{i}", InventoryJobType.RESERVE)

    assert service.run_jobs(limit=0)["processed"] == 1
    assert service.run_jobs()["processed"] == 10
    assert service.run_jobs(limit="abc")["processed"] == 1


def test_mark_reserve_jobs_done(db):
    service = InventoryService(db)
    service.enqueue("order-1", InventoryJobType.RESERVE)
    service.enqueue("order-1", InventoryJobType.RESERVE, status=InventoryJobStatus.FAILED)
    service.enqueue("order-1", InventoryJobType.CONSUME)

    assert service.mark_reserve_jobs_done("order-1") == 2
    statuses = {(j.job_type, j.status) for j in db.query(InventoryJob).all()}
    assert (InventoryJobType.CONSUME, InventoryJobStatus.PENDING) in statuses


def test_inventory_jobs_route(client, db):
    InventoryService(db).enqueue("order-x", InventoryJobType.RESERVE)
    response = client.post("/api/orders/inventory-jobs/run", json={"limit": 5})
    assert response.status_code == 200
    assert response.json()["processed"] == 1
