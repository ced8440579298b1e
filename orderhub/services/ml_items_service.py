"""
Sincronização de anúncios do Mercado Livre
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orderhub.config.settings import settings
from orderhub.models.marketplace_models import Marketplace, MarketplaceIntegration, MarketplaceItem
from orderhub.services.mercadolibre_client import MercadoLivreClient
from orderhub.services.raw_order_service import RawOrderService
from orderhub.utils.errors import MarketplaceAPIError, TokenRefreshError
from orderhub.utils.payload import as_dict, as_list, parse_datetime, to_num, utcnow

logger = logging.getLogger(__name__)

PAGE_LIMIT = 50
MAX_PAGES = 200


class MLItemsService:
    """Busca os anúncios do vendedor e faz upsert em marketplace_items"""

    def __init__(self, db: Session):
        self.db = db

    def sync_items(self, organization_id: Optional[str]) -> Dict[str, Any]:
        if not organization_id:
            return {"ok": False, "error": "Missing organizationId", "status_code": 400}

        integration = self.db.query(MarketplaceIntegration).filter(
            MarketplaceIntegration.organizations_id == organization_id,
            MarketplaceIntegration.marketplace_name == Marketplace.MERCADO_LIVRE,
        ).order_by(MarketplaceIntegration.expires_at.desc()).first()
        if not integration:
            return {"ok": False, "error": "Integration not found", "status_code": 404}
        if not integration.meli_user_id:
            return {"ok": False, "error": "Missing meli_user_id", "status_code": 400}

        client = MercadoLivreClient(self.db, integration)
        try:
            items = self._fetch_items(client, integration.meli_user_id)
        except TokenRefreshError as e:
            return {"ok": False, "error": str(e), "status_code": 401}
        except MarketplaceAPIError as e:
            logger.error(f"❌ Erro ao buscar anúncios ML: {e}")
            return {"ok": False, "error": e.error_code or "Failed to fetch items", "details": e.payload,
                    "status_code": e.status_code or 502}

        company_id = RawOrderService(self.db).resolve_company_id(integration)
        try:
            for item in items:
                self._upsert_item(item, organization_id, company_id, integration.meli_user_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Erro ao gravar anúncios ML: {e}")
            return {"ok": False, "error": str(e), "status_code": 500}

        logger.info(f"✅ {len(items)} anúncios ML sincronizados para a organização {organization_id}")
        return {"ok": True, "synced": len(items)}

    def _fetch_items(self, client: MercadoLivreClient, seller_id: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        offset = 0
        for _ in range(MAX_PAGES):
            payload = as_dict(client.get_json(
                f"/sites/{settings.ml_site_id}/search",
                params={"seller_id": seller_id, "offset": offset, "limit": PAGE_LIMIT},
            ))
            batch = as_list(payload.get("results"))
            items.extend(batch)
            total = int(as_dict(payload.get("paging")).get("total") or 0)
            offset += len(batch)
            if offset >= total or not batch:
                break
        return items

    def _upsert_item(self, item: Dict[str, Any], organization_id: str, company_id: Optional[str], seller_id: str):
        item_id = str(item.get("id") or "")
        if not item_id:
            return
        row = self.db.query(MarketplaceItem).filter(
            MarketplaceItem.organizations_id == organization_id,
            MarketplaceItem.marketplace_name == Marketplace.MERCADO_LIVRE,
            MarketplaceItem.marketplace_item_id == item_id,
        ).first()
        if not row:
            row = MarketplaceItem(
                organizations_id=organization_id,
                marketplace_name=Marketplace.MERCADO_LIVRE,
                marketplace_item_id=item_id,
            )
            self.db.add(row)

        pictures = [item["thumbnail"]] if item.get("thumbnail") else as_list(item.get("pictures"))
        seller = as_dict(item.get("seller"))
        row.company_id = company_id
        row.title = item.get("title")
        row.sku = item.get("seller_sku") or item.get("catalog_product_id")
        row.condition = item.get("condition")
        row.status = item.get("status")
        row.price = to_num(item.get("price"))
        row.available_quantity = item.get("available_quantity") if isinstance(item.get("available_quantity"), int) else None
        row.sold_quantity = item.get("sold_quantity") if isinstance(item.get("sold_quantity"), int) else None
        row.category_id = item.get("category_id")
        row.permalink = item.get("permalink")
        row.attributes = as_list(item.get("attributes"))
        row.variations = item.get("variations") if isinstance(item.get("variations"), list) else None
        row.pictures = pictures
        row.tags = item.get("tags") if isinstance(item.get("tags"), list) else None
        row.seller_id = str(seller["id"]) if seller.get("id") else str(seller_id)
        row.data = item
        row.published_at = None if item.get("stop_time") else parse_datetime(item.get("date_created"))
        row.last_synced_at = utcnow()
