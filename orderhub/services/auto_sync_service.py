"""
Serviço de sincronização automática em background
- Job 1: a cada SYNC_INTERVAL_MINUTES - pedidos ML incrementais (desde o watermark)
- Job 2: a cada SYNC_INTERVAL_MINUTES - pedidos Shopee das últimas 24h
- Job 3: a cada INVENTORY_JOBS_INTERVAL_MINUTES - worker de jobs de estoque
"""
import logging

from orderhub.config.database import SessionLocal
from orderhub.models.marketplace_models import Marketplace, MarketplaceIntegration
from orderhub.services.inventory_service import InventoryService
from orderhub.services.ml_orders_service import MLOrdersService
from orderhub.services.shopee_orders_service import ShopeeOrdersService

logger = logging.getLogger(__name__)


class AutoSyncService:
    """Serviço para sincronização automática de pedidos"""

    def _enabled_integrations(self, db, marketplace_name: str):
        return db.query(MarketplaceIntegration).filter(
            MarketplaceIntegration.marketplace_name == marketplace_name,
            MarketplaceIntegration.enabled.is_(True),
        ).all()

    def sync_ml_orders(self) -> dict:
        """
        JOB 1: Sincroniza pedidos ML de todas as integrações ativas
        Roda SEM precisar de usuário logado
        """
        db = SessionLocal()
        try:
            logger.info("🔄 [AUTO-SYNC ML] Iniciando sincronização incremental...")
            integrations = self._enabled_integrations(db, Marketplace.MERCADO_LIVRE)
            if not integrations:
                return {"success": True, "message": "Nenhuma integração ML ativa"}

            total_found = 0
            failures = 0
            for integration in integrations:
                result = MLOrdersService(db).sync_orders(
                    organization_id=integration.organizations_id,
                    seller_id=integration.meli_user_id,
                )
                if result.get("ok"):
                    total_found += result.get("orders_found", 0)
                    logger.info(f"   ✅ ML {integration.meli_user_id}: {result.get('created', 0)} novos, {result.get('updated', 0)} atualizados")
                else:
                    failures += 1
                    logger.error(f"   ❌ ML {integration.meli_user_id}: {result.get('error')}")

            logger.info(f"✅ [AUTO-SYNC ML] Concluído: {total_found} pedidos em {len(integrations)} contas")
            return {
                "success": failures == 0,
                "message": f"{total_found} pedidos ML sincronizados",
                "integrations": len(integrations),
                "failures": failures,
            }
        finally:
            db.close()

    def sync_shopee_orders(self) -> dict:
        """
        JOB 2: Sincroniza pedidos Shopee atualizados nas últimas 24h
        """
        db = SessionLocal()
        try:
            logger.info("🔄 [AUTO-SYNC SHOPEE] Iniciando sincronização das últimas 24h...")
            integrations = self._enabled_integrations(db, Marketplace.SHOPEE)
            if not integrations:
                return {"success": True, "message": "Nenhuma integração Shopee ativa"}

            fetched = 0
            failures = 0
            for integration in integrations:
                result = ShopeeOrdersService(db).sync_orders({
                    "organizationId": integration.organizations_id,
                    "shop_id": integration.meli_user_id,
                })
                for entry in result.get("results", []):
                    fetched += entry.get("fetched", 0)
                    if entry.get("error"):
                        failures += 1
                if not result.get("ok"):
                    failures += 1
                    logger.error(f"   ❌ Shopee {integration.meli_user_id}: {result.get('error')}")

            logger.info(f"✅ [AUTO-SYNC SHOPEE] Concluído: {fetched} pedidos em {len(integrations)} lojas")
            return {
                "success": failures == 0,
                "message": f"{fetched} pedidos Shopee sincronizados",
                "integrations": len(integrations),
                "failures": failures,
            }
        finally:
            db.close()

    def run_inventory_jobs(self) -> dict:
        """
        JOB 3: Processa a fila de jobs de estoque pendentes/falhos
        """
        db = SessionLocal()
        try:
            result = InventoryService(db).run_jobs(limit=50)
            if result.get("processed"):
                logger.info(f"✅ [INVENTORY JOBS] {result['processed']} jobs processados")
            return {"success": bool(result.get("ok")), "message": f"{result.get('processed', 0)} jobs processados"}
        finally:
            db.close()
