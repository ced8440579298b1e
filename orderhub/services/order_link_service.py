"""
Vínculo entre itens de pedidos e produtos internos
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from orderhub.models.marketplace_models import (
    InventoryJobStatus, InventoryJobType, MarketplaceItemProductLink, MarketplaceOrderItem,
    MarketplaceOrderPresented, MarketplaceOrderRaw, Product,
)
from orderhub.services.inventory_service import InventoryService
from orderhub.utils.logger import SyncTrace
from orderhub.utils.payload import as_list, get_str

logger = logging.getLogger(__name__)

A_VINCULAR_CARD = "A_VINCULAR"


class OrderLinkService:
    """Resolve vínculos permanentes/efêmeros e vincula itens manualmente"""

    def __init__(self, db: Session):
        self.db = db
        self.inventory = InventoryService(db)

    def resolve_links(self, raw: MarketplaceOrderRaw, keys: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
        """
        Para cada item do pedido procura o produto vinculado.

        Ordem: vínculo permanente (anúncio + variação), depois vínculos
        efêmeros (linhas de item já gravadas, raw.linked_products e o
        linked_products anterior do pedido apresentado).
        Retorna a lista de vínculos e a quantidade de itens sem vínculo.
        """
        rows_map: Dict[str, str] = {}
        for row in self.db.query(MarketplaceOrderItem).filter(MarketplaceOrderItem.id == raw.id).all():
            external_id = (row.model_id_externo or "").strip()
            product_id = (row.linked_products or "").strip()
            if external_id and product_id:
                rows_map[external_id] = product_id

        previous = self.db.query(MarketplaceOrderPresented.linked_products).filter(
            MarketplaceOrderPresented.id == raw.id).first()
        ephemeral = []
        for entry in as_list(raw.linked_products) + as_list(previous[0] if previous else None):
            product_id = (get_str(entry, "product_id") or "").strip()
            if product_id:
                ephemeral.append({
                    "marketplace_item_id": get_str(entry, "marketplace_item_id") or "",
                    "variation_id": get_str(entry, "variation_id") or "",
                    "product_id": product_id,
                })

        links = []
        unlinked = 0
        for key in keys:
            item_id = key.get("item_id") or ""
            variation_id = key.get("variation_id") or ""

            permanent = self.db.query(MarketplaceItemProductLink).filter(
                MarketplaceItemProductLink.organizations_id == raw.organizations_id,
                MarketplaceItemProductLink.marketplace_name == raw.marketplace_name,
                MarketplaceItemProductLink.marketplace_item_id == item_id,
                MarketplaceItemProductLink.variation_id == variation_id,
            ).first()
            permanent_id = permanent.product_id if permanent else None

            ephemeral_id = rows_map.get(key.get("external_id") or "")
            if not ephemeral_id:
                match = next((e for e in ephemeral
                              if e["marketplace_item_id"] == item_id and e["variation_id"] == variation_id), None)
                ephemeral_id = match["product_id"] if match else None

            product_id = permanent_id or ephemeral_id
            if not product_id and not key.get("seller_sku") and item_id:
                unlinked += 1

            sku = None
            if product_id:
                product = self.db.query(Product).filter(Product.id == product_id).first()
                sku = product.sku if product else None

            links.append({
                "marketplace_item_id": item_id,
                "variation_id": variation_id,
                "product_id": product_id,
                "sku": sku,
                "source": "permanent" if permanent_id else ("ephemeral" if ephemeral_id else None),
            })
        return links, unlinked

    def upsert_permanent_link(self, organization_id: str, company_id: Optional[str], marketplace_name: str,
                              item_id: str, variation_id: Optional[str], product_id: str) -> MarketplaceItemProductLink:
        link = self.db.query(MarketplaceItemProductLink).filter(
            MarketplaceItemProductLink.organizations_id == organization_id,
            MarketplaceItemProductLink.marketplace_name == marketplace_name,
            MarketplaceItemProductLink.marketplace_item_id == item_id,
            MarketplaceItemProductLink.variation_id == (variation_id or ""),
        ).first()
        if link:
            link.product_id = product_id
        else:
            link = MarketplaceItemProductLink(
                organizations_id=organization_id,
                company_id=company_id,
                marketplace_name=marketplace_name,
                marketplace_item_id=item_id,
                variation_id=variation_id or "",
                product_id=product_id,
            )
            self.db.add(link)
        self.db.commit()
        return link

    def refresh_order_flag(self, order_id: str) -> bool:
        """has_unlinked_items do pedido a partir das linhas de item"""
        rows = self.db.query(MarketplaceOrderItem).filter(MarketplaceOrderItem.id == order_id).all()
        has_unlinked = any(row.has_unlinked_items or not (row.linked_products or "").strip() for row in rows)
        order = self.db.query(MarketplaceOrderPresented).filter(MarketplaceOrderPresented.id == order_id).first()
        if order:
            order.has_unlinked_items = has_unlinked
        self.db.commit()
        return has_unlinked

    def link_item(self, order_id: Optional[str], product_id: Optional[str], item_row_id: Optional[int] = None,
                  external_item_id: Optional[str] = None, source_card: Optional[str] = None,
                  permanent: bool = False, correlation_id: Optional[str] = None) -> Dict[str, Any]:
        """Vincula um item do pedido a um produto, reserva estoque e reprocessa o pedido"""
        trace = SyncTrace(correlation_id, logger)
        if not order_id or not product_id or (item_row_id is None and not external_item_id):
            return {"ok": False, "error": "Missing order_id, product_id or item identifier", "status_code": 400}

        order = self.db.query(MarketplaceOrderPresented).filter(MarketplaceOrderPresented.id == order_id).first()
        if not order:
            return {"ok": False, "error": "Order not found", "status_code": 404}

        if (source_card or "").upper() == A_VINCULAR_CARD:
            available = self.inventory.available_stock(product_id, order.company_id)
            trace.add("stock_check", product_id=product_id, available=available)
            if available <= 0:
                return {"ok": False, "error": "Produto sem estoque para vinculação via A VINCULAR", "status_code": 400}

        try:
            item = self._find_item(order_id, item_row_id, external_item_id)
            if not item:
                return {"ok": False, "error": "Item not found for linking", "status_code": 404}

            item.linked_products = product_id
            item.has_unlinked_items = False
            self.db.commit()
            trace.add("item_linked", row_id=item.row_id, product_id=product_id)

            if permanent:
                item_id, variation_id = self._listing_for_item(order, item)
                if item_id:
                    self.upsert_permanent_link(order.organizations_id, order.company_id, order.marketplace,
                                               item_id, variation_id, product_id)
                    trace.add("permanent_link_saved", marketplace_item_id=item_id, variation_id=variation_id)

            has_unlinked = self.refresh_order_flag(order_id)

            storage = self.inventory.get_default_storage(order.organizations_id)
            if storage:
                self.inventory.reserve_for_order(order_id, self.inventory.linked_quantities(order_id),
                                                 storage.id, order.company_id)
                self.inventory.mark_reserve_jobs_done(order_id)
            else:
                self.inventory.enqueue(order_id, InventoryJobType.RESERVE, correlation_id=trace.correlation_id)

            # o reprocessamento recria as linhas de item
            item_data = {
                "row_id": item.row_id,
                "id": item.id,
                "model_id_externo": item.model_id_externo,
                "linked_products": product_id,
                "has_unlinked_items": False,
            }

            from orderhub.services.presented_order_service import PresentedOrderService
            reprocess = PresentedOrderService(self.db, trace.correlation_id).process(
                order.marketplace, raw_id=order_id)
            trace.add("reprocessed", ok=reprocess.get("ok"))
            if reprocess.get("ok"):
                self.db.refresh(order)
                has_unlinked = bool(order.has_unlinked_items)
            logger.info(f"✅ Item {item_data['row_id']} do pedido {order_id} vinculado ao produto {product_id}")
            return {"ok": True, "order_id": order_id, "item": item_data, "has_unlinked_items": has_unlinked,
                    "correlationId": trace.correlation_id}

        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Erro ao vincular item do pedido {order_id}: {e}")
            self.block_and_reserve_on_failure(order_id, str(e), trace.correlation_id)
            return {"ok": False, "error": str(e), "status_code": 500}

    def block_and_reserve_on_failure(self, order_id: str, error: str, correlation_id: Optional[str] = None) -> None:
        """Bloqueia o pedido e enfileira a reserva para o worker tentar novamente"""
        try:
            order = self.db.query(MarketplaceOrderPresented).filter(MarketplaceOrderPresented.id == order_id).first()
            if order:
                order.has_unlinked_items = True
                self.db.commit()
            self.inventory.enqueue(order_id, InventoryJobType.RESERVE, status=InventoryJobStatus.FAILED,
                                   error_log=error, correlation_id=correlation_id)
            storage = self.inventory.get_default_storage(order.organizations_id) if order else None
            if storage:
                self.inventory.reserve_for_order(order_id, self.inventory.linked_quantities(order_id),
                                                 storage.id, order.company_id)
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Erro ao bloquear pedido {order_id} após falha de vínculo: {e}")

    def _find_item(self, order_id: str, item_row_id: Optional[int], external_item_id: Optional[str]) -> Optional[MarketplaceOrderItem]:
        query = self.db.query(MarketplaceOrderItem)
        if item_row_id is not None:
            item = query.filter(MarketplaceOrderItem.row_id == int(item_row_id), MarketplaceOrderItem.id == order_id).first()
            if item:
                return item
        if external_item_id:
            item = query.filter(MarketplaceOrderItem.id == order_id,
                                MarketplaceOrderItem.model_id_externo == str(external_item_id)).first()
            if item:
                return item
        for item in query.filter(MarketplaceOrderItem.id == order_id).order_by(MarketplaceOrderItem.row_id).all():
            if item.has_unlinked_items or not (item.linked_products or "").strip():
                return item
        return None

    def _listing_for_item(self, order: MarketplaceOrderPresented, item: MarketplaceOrderItem) -> Tuple[Optional[str], str]:
        """Anúncio e variação da linha, a partir dos vínculos calculados do pedido"""
        for link in as_list(order.linked_products):
            item_id = get_str(link, "marketplace_item_id")
            variation_id = get_str(link, "variation_id") or ""
            if item.model_id_externo in (variation_id, item_id):
                return item_id, variation_id
        return item.model_id_externo, ""
