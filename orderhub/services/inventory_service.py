"""
Serviço de estoque dos pedidos: reservas, baixas, estornos e o worker de inventory_jobs
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from orderhub.models.marketplace_models import (
    InventoryJob, InventoryJobStatus, InventoryJobType, MarketplaceOrderItem, MarketplaceOrderPresented,
    ProductStock, ReservationStatus, StockReservation, Storage,
)
from orderhub.utils.payload import utcnow

logger = logging.getLogger(__name__)

DEFAULT_JOBS_LIMIT = 10
MAX_JOBS_LIMIT = 50


class InventoryService:
    """Operações de estoque vinculadas a pedidos"""

    def __init__(self, db: Session):
        self.db = db

    # === CONSULTAS ===

    def get_default_storage(self, organization_id: Optional[str]) -> Optional[Storage]:
        if not organization_id:
            return None
        return self.db.query(Storage).filter(
            Storage.organizations_id == organization_id,
            Storage.is_default == True,  # noqa: E712
            Storage.active == True,  # noqa: E712
        ).first()

    def available_stock(self, product_id: str, company_id: Optional[str] = None) -> int:
        """Saldo disponível somado (registros sem empresa ou da empresa informada)"""
        query = self.db.query(ProductStock).filter(ProductStock.product_id == product_id)
        if company_id:
            query = query.filter(or_(ProductStock.company_id.is_(None), ProductStock.company_id == company_id))
        else:
            query = query.filter(ProductStock.company_id.is_(None))
        return sum(stock.available for stock in query.all())

    def linked_quantities(self, order_id: str) -> List[Dict[str, Any]]:
        """Quantidades por produto a partir das linhas de item vinculadas"""
        totals: Dict[str, int] = {}
        rows = self.db.query(MarketplaceOrderItem).filter(MarketplaceOrderItem.id == order_id).all()
        for row in rows:
            product_id = (row.linked_products or "").strip()
            if not product_id:
                continue
            totals[product_id] = totals.get(product_id, 0) + int(row.quantity or 1)
        return [{"product_id": pid, "quantity": max(1, qty)} for pid, qty in totals.items()]

    # === MOVIMENTAÇÕES ===

    def _stock_row(self, product_id: str, storage_id: str, company_id: Optional[str] = None) -> ProductStock:
        stock = self.db.query(ProductStock).filter(
            ProductStock.product_id == product_id,
            ProductStock.storage_id == storage_id,
        ).first()
        if not stock:
            stock = ProductStock(product_id=product_id, storage_id=storage_id, company_id=company_id, current=0, reserved=0)
            self.db.add(stock)
            self.db.flush()
        return stock

    def reserve_for_order(self, order_id: str, items: List[Dict[str, Any]], storage_id: str,
                          company_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Reserva (idempotente) as quantidades do pedido no depósito.

        Reservas já existentes são ajustadas pela diferença; reservas
        consumidas ou estornadas não são tocadas.
        """
        reserved = 0
        for item in items:
            product_id = item.get("product_id")
            if not product_id:
                continue
            quantity = max(1, int(item.get("quantity") or 1))
            reservation = self.db.query(StockReservation).filter(
                StockReservation.order_id == order_id,
                StockReservation.product_id == product_id,
                StockReservation.storage_id == storage_id,
            ).first()
            stock = self._stock_row(product_id, storage_id, company_id)

            if reservation and reservation.status != ReservationStatus.RESERVED:
                continue
            if reservation:
                delta = quantity - (reservation.quantity or 0)
                reservation.quantity = quantity
            else:
                delta = quantity
                self.db.add(StockReservation(
                    order_id=order_id,
                    product_id=product_id,
                    storage_id=storage_id,
                    quantity=quantity,
                    status=ReservationStatus.RESERVED,
                ))
            stock.reserved = (stock.reserved or 0) + delta
            if stock.available < 0:
                logger.warning(f"⚠️ Estoque negativo para produto {product_id} no depósito {storage_id}")
            reserved += 1

        self.db.commit()
        return {"ok": True, "reserved_items": reserved}

    def consume_order(self, order_id: str) -> Dict[str, Any]:
        """Baixa definitiva: reservas viram saída de estoque"""
        consumed = 0
        reservations = self.db.query(StockReservation).filter(
            StockReservation.order_id == order_id,
            StockReservation.status == ReservationStatus.RESERVED,
        ).all()
        for reservation in reservations:
            stock = self._stock_row(reservation.product_id, reservation.storage_id)
            stock.current = (stock.current or 0) - reservation.quantity
            stock.reserved = max(0, (stock.reserved or 0) - reservation.quantity)
            reservation.status = ReservationStatus.CONSUMED
            consumed += 1
        self.db.commit()
        return {"ok": True, "consumed_items": consumed}

    def refund_order(self, order_id: str) -> Dict[str, Any]:
        """Estorno: libera reservas e devolve ao estoque o que já foi baixado"""
        refunded = 0
        reservations = self.db.query(StockReservation).filter(
            StockReservation.order_id == order_id,
            StockReservation.status.in_([ReservationStatus.RESERVED, ReservationStatus.CONSUMED]),
        ).all()
        for reservation in reservations:
            stock = self._stock_row(reservation.product_id, reservation.storage_id)
            if reservation.status == ReservationStatus.RESERVED:
                stock.reserved = max(0, (stock.reserved or 0) - reservation.quantity)
            else:
                stock.current = (stock.current or 0) + reservation.quantity
            reservation.status = ReservationStatus.REFUNDED
            refunded += 1
        self.db.commit()
        return {"ok": True, "refunded_items": refunded}

    # === FILA ===

    def enqueue(self, order_id: str, job_type: InventoryJobType, status: InventoryJobStatus = InventoryJobStatus.PENDING,
                error_log: Optional[str] = None, correlation_id: Optional[str] = None) -> InventoryJob:
        job = InventoryJob(
            order_id=order_id,
            job_type=job_type,
            status=status,
            attempts=0,
            error_log=error_log,
            correlation_id=correlation_id,
            next_attempt_at=utcnow() if status == InventoryJobStatus.FAILED else None,
        )
        self.db.add(job)
        self.db.commit()
        return job

    def mark_reserve_jobs_done(self, order_id: str) -> int:
        jobs = self.db.query(InventoryJob).filter(
            InventoryJob.order_id == order_id,
            InventoryJob.job_type == InventoryJobType.RESERVE,
            InventoryJob.status.in_([InventoryJobStatus.PENDING, InventoryJobStatus.FAILED]),
        ).all()
        for job in jobs:
            job.status = InventoryJobStatus.DONE
            job.error_log = None
        self.db.commit()
        return len(jobs)

    def run_jobs(self, order_id: Optional[str] = None, limit: Optional[int] = None,
                 correlation_id: Optional[str] = None) -> Dict[str, Any]:
        """Processa jobs pendentes e jobs com falha cujo backoff já venceu"""
        try:
            limit = int(limit) if limit is not None else DEFAULT_JOBS_LIMIT
        except (TypeError, ValueError):
            limit = DEFAULT_JOBS_LIMIT
        limit = max(1, min(MAX_JOBS_LIMIT, limit))
        now = utcnow()

        query = self.db.query(InventoryJob).filter(
            or_(
                InventoryJob.status == InventoryJobStatus.PENDING,
                (InventoryJob.status == InventoryJobStatus.FAILED)
                & or_(InventoryJob.next_attempt_at.is_(None), InventoryJob.next_attempt_at <= now),
            )
        )
        if order_id:
            query = query.filter(InventoryJob.order_id == order_id)
        jobs = query.order_by(InventoryJob.created_at.asc()).limit(limit).all()

        results = []
        for job in jobs:
            results.append(self._run_job(job))

        if results:
            logger.info(f"✅ Inventory jobs processados: {len(results)} (correlation={correlation_id})")
        return {"ok": True, "processed": len(results), "results": results}

    def _run_job(self, job: InventoryJob) -> Dict[str, Any]:
        job.status = InventoryJobStatus.PROCESSING
        job.attempts = (job.attempts or 0) + 1
        job.last_attempt_at = utcnow()
        self.db.commit()

        try:
            order = self.db.query(MarketplaceOrderPresented).filter(MarketplaceOrderPresented.id == job.order_id).first()
            if not order:
                delay = min(15 * 60, 10 * job.attempts)
                return self._fail(job, "order_not_found", delay)
            if not order.organizations_id:
                return self._fail(job, "organization_not_found", 60)
            storage = self.get_default_storage(order.organizations_id)
            if not storage:
                return self._fail(job, "default_storage_not_found", 120)

            if job.job_type == InventoryJobType.RESERVE:
                result = self.reserve_for_order(order.id, self.linked_quantities(order.id), storage.id, order.company_id)
            elif job.job_type == InventoryJobType.CONSUME:
                result = self.consume_order(order.id)
            elif job.job_type == InventoryJobType.REFUND:
                result = self.refund_order(order.id)
            else:
                raise ValueError(f"Tipo de job não suportado: {job.job_type}")

            job.status = InventoryJobStatus.DONE
            job.error_log = None
            job.next_attempt_at = None
            self.db.commit()
            return {"job_id": job.id, "order_id": job.order_id, "status": "done", "result": result}

        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Erro no job de estoque {job.id}: {e}")
            delay = min(30 * 60, 30 * (job.attempts or 1))
            return self._fail(job, str(e), delay)

    def _fail(self, job: InventoryJob, error: str, retry_in_seconds: int) -> Dict[str, Any]:
        job.status = InventoryJobStatus.FAILED
        job.error_log = error
        job.next_attempt_at = utcnow() + timedelta(seconds=retry_in_seconds)
        self.db.commit()
        logger.warning(f"⚠️ Job {job.id} falhou ({error}), nova tentativa em {retry_in_seconds}s")
        return {"job_id": job.id, "order_id": job.order_id, "status": "failed", "error": error,
                "retry_in_seconds": retry_in_seconds}
