"""
Controller das operações Mercado Livre (OAuth, pedidos, anúncios e webhook)
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from orderhub.models.marketplace_models import Marketplace
from orderhub.services.ml_items_service import MLItemsService
from orderhub.services.ml_orders_service import MLOrdersService
from orderhub.services.oauth_service import OAuthService
from orderhub.services.presented_order_service import PresentedOrderService

logger = logging.getLogger(__name__)


class MLController:
    def __init__(self, db: Session, correlation_id: Optional[str] = None):
        self.db = db
        self.correlation_id = correlation_id

    def start_auth(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return OAuthService(self.db).ml_start(params)

    def callback(self, code: Optional[str], state: Optional[str]) -> Dict[str, Any]:
        return OAuthService(self.db).ml_callback(code, state)

    def refresh(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return OAuthService(self.db).refresh(Marketplace.MERCADO_LIVRE, params)

    def sync_orders(self, organization_id: Optional[str], seller_id: Optional[str], full: bool = False,
                    status: Optional[str] = None, order_ids: Optional[List[Any]] = None) -> Dict[str, Any]:
        logger.info(f"🔄 Sync de pedidos ML solicitado (org={organization_id}, seller={seller_id}, full={full})")
        return MLOrdersService(self.db, self.correlation_id).sync_orders(
            organization_id=organization_id,
            seller_id=seller_id,
            full=full,
            status=status,
            order_ids=order_ids,
        )

    def sync_items(self, organization_id: Optional[str]) -> Dict[str, Any]:
        return MLItemsService(self.db).sync_items(organization_id)

    def process_presented(self, raw_id: Optional[str], order_id: Optional[str], status_only: bool = False,
                          organization_id: Optional[str] = None) -> Dict[str, Any]:
        return PresentedOrderService(self.db, self.correlation_id).process(
            Marketplace.MERCADO_LIVRE, raw_id=raw_id, order_id=order_id,
            status_only=status_only, organization_id=organization_id,
        )

    def handle_notification(self, notification: Dict[str, Any]) -> Dict[str, Any]:
        return MLOrdersService(self.db, self.correlation_id).handle_notification(notification)
