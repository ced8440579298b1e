"""
Controller das operações comuns de pedidos (vinculação de itens e jobs de estoque)
"""
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from orderhub.services.inventory_service import InventoryService
from orderhub.services.order_link_service import OrderLinkService


class OrdersController:
    def __init__(self, db: Session, correlation_id: Optional[str] = None):
        self.db = db
        self.correlation_id = correlation_id

    def link_item(self, order_id: Optional[str], product_id: Optional[str], item_row_id: Optional[int] = None,
                  external_item_id: Optional[str] = None, source_card: Optional[str] = None,
                  permanent: bool = False) -> Dict[str, Any]:
        return OrderLinkService(self.db).link_item(
            order_id, product_id,
            item_row_id=item_row_id,
            external_item_id=external_item_id,
            source_card=source_card,
            permanent=permanent,
            correlation_id=self.correlation_id,
        )

    def run_inventory_jobs(self, order_id: Optional[str] = None, limit: Optional[int] = None) -> Dict[str, Any]:
        return InventoryService(self.db).run_jobs(order_id=order_id, limit=limit, correlation_id=self.correlation_id)
