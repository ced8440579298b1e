"""
Upsert idempotente dos pedidos brutos
"""
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from orderhub.models.marketplace_models import Company, MarketplaceIntegration, MarketplaceOrderRaw

logger = logging.getLogger(__name__)


class RawOrderService:
    """Grava o payload do marketplace em marketplace_orders_raw (chave org + marketplace + pedido)"""

    def __init__(self, db: Session):
        self.db = db

    def resolve_company_id(self, integration: MarketplaceIntegration) -> Optional[str]:
        if integration.company_id:
            return integration.company_id
        company = self.db.query(Company).filter(Company.organization_id == integration.organizations_id).first()
        return company.id if company else None

    def find(self, organization_id: str, marketplace_name: str, marketplace_order_id: str) -> Optional[MarketplaceOrderRaw]:
        return self.db.query(MarketplaceOrderRaw).filter(
            MarketplaceOrderRaw.organizations_id == organization_id,
            MarketplaceOrderRaw.marketplace_name == marketplace_name,
            MarketplaceOrderRaw.marketplace_order_id == str(marketplace_order_id),
        ).first()

    def find_many(self, organization_id: str, marketplace_name: str,
                  marketplace_order_ids: Iterable[str]) -> Dict[str, MarketplaceOrderRaw]:
        ids = [str(i) for i in marketplace_order_ids]
        if not ids:
            return {}
        rows = self.db.query(MarketplaceOrderRaw).filter(
            MarketplaceOrderRaw.organizations_id == organization_id,
            MarketplaceOrderRaw.marketplace_name == marketplace_name,
            MarketplaceOrderRaw.marketplace_order_id.in_(ids),
        ).all()
        return {row.marketplace_order_id: row for row in rows}

    def upsert(self, organization_id: str, marketplace_name: str, marketplace_order_id: str,
               fields: Dict[str, Any]) -> Tuple[MarketplaceOrderRaw, bool]:
        """Cria ou atualiza o pedido bruto; retorna (linha, criado)"""
        raw = self.find(organization_id, marketplace_name, marketplace_order_id)
        created = raw is None
        if created:
            raw = MarketplaceOrderRaw(
                organizations_id=organization_id,
                marketplace_name=marketplace_name,
                marketplace_order_id=str(marketplace_order_id),
            )
            self.db.add(raw)
        for key, value in fields.items():
            setattr(raw, key, value)
        self.db.commit()
        self.db.refresh(raw)
        logger.info(f"✅ Pedido bruto {marketplace_name}/{marketplace_order_id} {'criado' if created else 'atualizado'}")
        return raw, created
