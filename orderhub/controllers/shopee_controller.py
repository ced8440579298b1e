"""
Controller das operações Shopee (OAuth, pedidos, envio e webhook)
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from orderhub.models.marketplace_models import Marketplace
from orderhub.services.oauth_service import OAuthService
from orderhub.services.presented_order_service import PresentedOrderService
from orderhub.services.shopee_orders_service import ShopeeOrdersService
from orderhub.services.shopee_shipment_service import ShopeeShipmentService

logger = logging.getLogger(__name__)


class ShopeeController:
    def __init__(self, db: Session, correlation_id: Optional[str] = None):
        self.db = db
        self.correlation_id = correlation_id

    def start_auth(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return OAuthService(self.db).shopee_start(params)

    def callback(self, code: Optional[str], shop_id: Optional[str], state: Optional[str]) -> Dict[str, Any]:
        return OAuthService(self.db).shopee_callback(code, shop_id, state)

    def refresh(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return OAuthService(self.db).refresh(Marketplace.SHOPEE, params)

    def sync_orders(self, params: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"🔄 Sync de pedidos Shopee solicitado: {params}")
        return ShopeeOrdersService(self.db, self.correlation_id).sync_orders(params)

    def process_presented(self, raw_id: Optional[str], order_id: Optional[str], status_only: bool = False,
                          organization_id: Optional[str] = None) -> Dict[str, Any]:
        return PresentedOrderService(self.db, self.correlation_id).process(
            Marketplace.SHOPEE, raw_id=raw_id, order_id=order_id,
            status_only=status_only, organization_id=organization_id,
        )

    def arrange_shipment(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return ShopeeShipmentService(self.db, self.correlation_id).arrange(params)

    def handle_webhook(self, payload: Any) -> Dict[str, Any]:
        return ShopeeOrdersService(self.db, self.correlation_id).handle_webhook(payload)
