"""
Processamento do pedido apresentado (Mercado Livre e Shopee)
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orderhub.models.marketplace_models import (
    Marketplace, MarketplaceOrderItem, MarketplaceOrderPresented, MarketplaceOrderRaw, NotaFiscal,
)
from orderhub.services import order_presenters
from orderhub.services.inventory_service import InventoryService
from orderhub.services.order_link_service import OrderLinkService
from orderhub.utils.logger import SyncTrace, get_integration_logger
from orderhub.utils.payload import as_dict

logger = logging.getLogger(__name__)


class PresentedOrderService:
    """Transforma o pedido bruto em pedido apresentado + linhas de item"""

    def __init__(self, db: Session, correlation_id: Optional[str] = None):
        self.db = db
        self.trace = SyncTrace(correlation_id, logger)
        self.links = OrderLinkService(db)
        self.inventory = InventoryService(db)

    def process(self, marketplace: str, raw_id: Optional[str] = None, order_id: Optional[str] = None,
                status_only: bool = False, organization_id: Optional[str] = None) -> Dict[str, Any]:
        trace = self.trace
        trace.add("input_received", raw_id=raw_id, order_id=order_id, status_only=status_only)
        if not raw_id and not order_id:
            return {"ok": False, "error": "Missing raw_id", "correlationId": trace.correlation_id, "status_code": 400}

        query = self.db.query(MarketplaceOrderRaw)
        if raw_id:
            raw = query.filter(MarketplaceOrderRaw.id == raw_id).first()
        else:
            query = query.filter(
                MarketplaceOrderRaw.marketplace_name == marketplace,
                MarketplaceOrderRaw.marketplace_order_id == str(order_id),
            )
            if organization_id:
                query = query.filter(MarketplaceOrderRaw.organizations_id == organization_id)
            raw = query.first()
        if not raw:
            trace.add("raw_not_found")
            return {"ok": False, "error": "Raw not found", "correlationId": trace.correlation_id, "status_code": 404}
        if raw.marketplace_name != marketplace:
            return {"ok": False, "error": f"Only {marketplace} supported", "correlationId": trace.correlation_id,
                    "status_code": 400}
        trace.add("raw_loaded", id=raw.id, organizations_id=raw.organizations_id)

        try:
            if marketplace == Marketplace.MERCADO_LIVRE:
                return self._process_mercado_livre(raw, status_only)
            return self._process_shopee(raw, status_only)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Erro ao processar pedido apresentado {raw.id}: {e}")
            get_integration_logger().log_order_processed(marketplace, raw.marketplace_order_id, raw.organizations_id,
                                                         False, "error", str(e))
            return {"ok": False, "error": str(e), "correlationId": trace.correlation_id, "status_code": 500}

    # === MERCADO LIVRE ===

    def _process_mercado_livre(self, raw: MarketplaceOrderRaw, status_only: bool) -> Dict[str, Any]:
        keys = order_presenters.ml_link_keys(raw)
        links, unlinked = self.links.resolve_links(raw, keys)
        row = order_presenters.present_mercado_livre(raw, links, unlinked > 0)

        if status_only:
            return self._update_status_only(raw, row["status_interno"])

        upsert_error = self._upsert_presented(raw, row)
        item_rows = order_presenters.ml_item_rows(raw, row["pack_id"])
        inserted, failures = self._replace_items(raw, row["pack_id"], item_rows, links, keys, delete_by_order_id=True)

        has_unlinked = self._refresh_from_items(
            raw, lambda flag: order_presenters.ml_status_interno(row, flag))
        self._reserve_linked_products(raw, links, keys)

        get_integration_logger().log_order_processed(raw.marketplace_name, raw.marketplace_order_id,
                                                     raw.organizations_id, not failures, "presented")
        return self._result(raw, row["pack_id"], inserted, "order_items", upsert_error, failures, has_unlinked)

    # === SHOPEE ===

    def _process_shopee(self, raw: MarketplaceOrderRaw, status_only: bool) -> Dict[str, Any]:
        data = as_dict(raw.data)
        status = order_presenters.shopee_order_status(data)
        self.trace.add("status_detected", status=status)
        if status == "unpaid":
            return {"ok": True, "skipped": True, "reason": "unpaid", "correlationId": self.trace.correlation_id}

        keys = order_presenters.shopee_link_keys(data)
        links, unlinked = self.links.resolve_links(raw, keys)
        row = order_presenters.present_shopee(raw, links, unlinked > 0)

        previous_status = self.db.query(MarketplaceOrderPresented.status_interno).filter(
            MarketplaceOrderPresented.id == raw.id).scalar()
        locked = order_presenters.is_submit_locked(previous_status, self._latest_invoice_submission(raw))
        if locked:
            self.trace.add("status_locked_subir_xml", status_interno=previous_status)
            row["status_interno"] = previous_status

        if status_only:
            return self._update_status_only(raw, row["status_interno"])

        upsert_error = self._upsert_presented(raw, row)
        items, items_source = order_presenters.shopee_items_source(data)
        self.trace.add("items_source_detected", items_source=items_source, count=len(items))
        inserted, failures = 0, []
        if row["pack_id"] and items:
            item_rows = order_presenters.shopee_item_rows(raw, items, row["pack_id"])
            inserted, failures = self._replace_items(raw, row["pack_id"], item_rows, links, keys, delete_by_order_id=False)

        def next_status(flag: bool) -> str:
            return previous_status if locked else order_presenters.shopee_status_interno(data, flag)

        has_unlinked = self._refresh_from_items(raw, next_status)

        jobs = self.inventory.run_jobs(order_id=raw.id, correlation_id=self.trace.correlation_id)
        self.trace.add("inventory_jobs_worker", processed=jobs.get("processed"))

        get_integration_logger().log_order_processed(raw.marketplace_name, raw.marketplace_order_id,
                                                     raw.organizations_id, not failures, "presented")
        return self._result(raw, row["pack_id"], inserted, items_source, upsert_error, failures, has_unlinked)

    def _latest_invoice_submission(self, raw: MarketplaceOrderRaw) -> Optional[str]:
        nota = self.db.query(NotaFiscal).filter(
            NotaFiscal.company_id == raw.company_id,
            NotaFiscal.marketplace_order_id == raw.marketplace_order_id,
        ).order_by(NotaFiscal.created_at.desc()).first()
        return nota.marketplace_submission_status if nota else None

    # === ETAPAS COMUNS ===

    def _update_status_only(self, raw: MarketplaceOrderRaw, status_interno: str) -> Dict[str, Any]:
        presented = self.db.query(MarketplaceOrderPresented).filter(MarketplaceOrderPresented.id == raw.id).first()
        if not presented:
            return {"ok": False, "error": "Presented order not found", "correlationId": self.trace.correlation_id,
                    "status_code": 404}
        presented.status_interno = status_interno
        self.db.commit()
        self.trace.add("presented_status_update_ok", id=raw.id, status_interno=status_interno)
        return {"ok": True, "id": raw.id, "status_interno": status_interno}

    def _upsert_presented(self, raw: MarketplaceOrderRaw, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            presented = self.db.query(MarketplaceOrderPresented).filter(MarketplaceOrderPresented.id == raw.id).first()
            if not presented:
                presented = MarketplaceOrderPresented(id=raw.id)
                self.db.add(presented)
            presented.organizations_id = raw.organizations_id
            presented.company_id = raw.company_id
            presented.marketplace = raw.marketplace_name
            presented.marketplace_order_id = raw.marketplace_order_id
            for field, value in row.items():
                # dados de envio gravados pelo arrange-shipment não são apagados por reprocessamento
                if field in ("shipping_info", "tracking_number") and value is None:
                    continue
                setattr(presented, field, value)
            self.db.commit()
            self.trace.add("presented_upsert_ok", id=raw.id)
            return None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Erro no upsert do pedido apresentado {raw.id}: {e}")
            self.trace.add("presented_upsert_error", error=str(e))
            return {"message": str(e)}

    def _replace_items(self, raw: MarketplaceOrderRaw, pack_id: Optional[str], rows: List[Dict[str, Any]],
                       links: List[Dict[str, Any]], keys: List[Dict[str, Any]], delete_by_order_id: bool):
        """Apaga as linhas antigas e insere as novas (em lote; um a um se o lote falhar)"""
        product_by_external = {}
        for key, link in zip(keys, links):
            if key.get("external_id") and link.get("product_id"):
                product_by_external[key["external_id"]] = link["product_id"]
        # vínculos efêmeros já gravados nas linhas antigas
        for old in self.db.query(MarketplaceOrderItem).filter(MarketplaceOrderItem.id == raw.id).all():
            if old.model_id_externo and (old.linked_products or "").strip():
                product_by_external.setdefault(old.model_id_externo, old.linked_products.strip())

        for item_row in rows:
            product_id = product_by_external.get(item_row.get("model_id_externo") or "")
            item_row["linked_products"] = product_id
            item_row["has_unlinked_items"] = product_id is None

        if pack_id:
            self.db.query(MarketplaceOrderItem).filter(MarketplaceOrderItem.pack_id == pack_id).delete(synchronize_session=False)
        if delete_by_order_id:
            self.db.query(MarketplaceOrderItem).filter(MarketplaceOrderItem.id == raw.id).delete(synchronize_session=False)

        if not rows:
            self.db.commit()
            return 0, []

        try:
            self.db.bulk_insert_mappings(MarketplaceOrderItem, rows)
            self.db.commit()
            self.trace.add("items_insert_bulk_ok", count=len(rows))
            return len(rows), []
        except SQLAlchemyError as e:
            self.db.rollback()
            self.trace.add("items_insert_bulk_error", error=str(e))
            logger.warning(f"⚠️ Inserção em lote falhou para o pedido {raw.id}, inserindo um a um: {e}")

        if pack_id:
            self.db.query(MarketplaceOrderItem).filter(MarketplaceOrderItem.pack_id == pack_id).delete(synchronize_session=False)
        if delete_by_order_id:
            self.db.query(MarketplaceOrderItem).filter(MarketplaceOrderItem.id == raw.id).delete(synchronize_session=False)
        self.db.commit()

        successes = 0
        failures = []
        for index, item_row in enumerate(rows):
            try:
                self.db.add(MarketplaceOrderItem(**item_row))
                self.db.commit()
                successes += 1
            except SQLAlchemyError as e:
                self.db.rollback()
                failures.append({"index": index, "error": str(e), "row": item_row})
        self.trace.add("items_insert_fallback_result", successes=successes, failures=len(failures))
        return successes, failures

    def _refresh_from_items(self, raw: MarketplaceOrderRaw, status_for: Callable[[bool], str]) -> bool:
        """Recalcula has_unlinked_items e status_interno a partir das linhas gravadas"""
        rows = self.db.query(MarketplaceOrderItem).filter(MarketplaceOrderItem.id == raw.id).all()
        has_unlinked = any(r.has_unlinked_items or not (r.linked_products or "").strip() for r in rows)
        presented = self.db.query(MarketplaceOrderPresented).filter(MarketplaceOrderPresented.id == raw.id).first()
        if not presented:
            return has_unlinked
        next_status = status_for(has_unlinked)
        if presented.status_interno != next_status:
            self.trace.add("status_interno_refreshed_from_items", prev=presented.status_interno, next=next_status)
            presented.status_interno = next_status
        presented.has_unlinked_items = has_unlinked
        self.db.commit()
        return has_unlinked

    def _reserve_linked_products(self, raw: MarketplaceOrderRaw, links: List[Dict[str, Any]],
                                 keys: List[Dict[str, Any]]) -> None:
        """
        Reserva no depósito padrão quando o pedido tem vínculo permanente.

        A quantidade por produto vem das linhas de item vinculadas (efêmeras e
        permanentes), a mesma base usada ao vincular um item; os totais dos
        vínculos permanentes só completam produtos que ainda não têm linha.
        """
        permanent: Dict[str, int] = {}
        for key, link in zip(keys, links):
            if link.get("source") == "permanent" and link.get("product_id"):
                permanent[link["product_id"]] = permanent.get(link["product_id"], 0) + int(key.get("quantity") or 1)
        if not permanent:
            self.trace.add("reserve_skipped", reason="no_permanent_links")
            return
        storage = self.inventory.get_default_storage(raw.organizations_id)
        if not storage:
            self.trace.add("reserve_skipped", reason="no_default_storage")
            return
        totals = {item["product_id"]: item["quantity"] for item in self.inventory.linked_quantities(raw.id)}
        for product_id, quantity in permanent.items():
            totals[product_id] = max(totals.get(product_id, 0), quantity)
        items = [{"product_id": pid, "quantity": max(1, qty)} for pid, qty in totals.items()]
        result = self.inventory.reserve_for_order(raw.id, items, storage.id, raw.company_id)
        self.trace.add("reserve_ok", reserved_items=result.get("reserved_items"))

    def _result(self, raw: MarketplaceOrderRaw, pack_id: Optional[str], inserted: int, items_source: Optional[str],
                upsert_error: Optional[Dict[str, Any]], failures: List[Dict[str, Any]],
                has_unlinked: bool) -> Dict[str, Any]:
        return {
            "ok": not failures,
            "raw_id": raw.id,
            "pack_id": pack_id,
            "items_inserted": inserted,
            "has_unlinked_items": has_unlinked,
            "correlationId": self.trace.correlation_id,
            "items_source": items_source,
            "presented_upsert_error": upsert_error,
            "debug": self.trace.events,
        }
