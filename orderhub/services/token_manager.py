"""
Token Manager - gerenciamento centralizado dos tokens OAuth (Mercado Livre e Shopee)
"""
import requests
import logging
import time
from datetime import timedelta
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session

from orderhub.config.settings import settings
from orderhub.models.marketplace_models import MarketplaceApp, MarketplaceIntegration, Marketplace
from orderhub.utils import shopee_signature
from orderhub.utils.payload import utcnow
from orderhub.utils.token_crypto import load_key, encrypt_token, try_decrypt_token

logger = logging.getLogger(__name__)

SHOPEE_REFRESH_PATH = "/api/v2/auth/access_token/get"
SHOPEE_DEFAULT_TTL = 14400


class TokenManager:
    """Gerenciador centralizado de tokens das integrações"""

    def __init__(self, db: Session):
        self.db = db
        self.token_url = settings.ml_token_url
        self._key = load_key(settings.tokens_encryption_key) if settings.tokens_encryption_key else None

    # === CRIPTOGRAFIA ===

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        if not value:
            return value
        if not self._key:
            logger.warning("⚠️ TOKENS_ENCRYPTION_KEY não configurada, token salvo sem criptografia")
            return value
        return encrypt_token(value, self._key)

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        return try_decrypt_token(value, self._key)

    # === CREDENCIAIS DO APP ===

    def get_app_credentials(self, marketplace_name: str) -> Dict[str, Any]:
        """Credenciais do app (tabela apps), com fallback para variáveis de ambiente"""
        app = self.db.query(MarketplaceApp).filter(MarketplaceApp.name == marketplace_name).first()
        if app and app.client_id and app.client_secret:
            return {
                "client_id": app.client_id,
                "client_secret": app.client_secret,
                "auth_url": app.auth_url,
                "config": app.config or {},
            }
        if marketplace_name == Marketplace.SHOPEE:
            return {
                "client_id": settings.shopee_partner_id,
                "client_secret": settings.shopee_partner_key,
                "auth_url": None,
                "config": {},
            }
        return {
            "client_id": settings.ml_client_id,
            "client_secret": settings.ml_client_secret,
            "auth_url": settings.ml_auth_url,
            "config": {},
        }

    # === ESTADO DO TOKEN ===

    def get_access_token(self, integration: MarketplaceIntegration) -> Optional[str]:
        return self.decrypt(integration.access_token)

    def is_expired(self, integration: MarketplaceIntegration) -> bool:
        if not integration.expires_at:
            return False
        return utcnow() >= integration.expires_at

    def save_tokens(self, integration: MarketplaceIntegration, access_token: str,
                    refresh_token: Optional[str], expires_in: Optional[int],
                    user_id: Optional[Any] = None) -> None:
        """Persiste tokens criptografados e a nova expiração"""
        integration.access_token = self.encrypt(access_token)
        if refresh_token:
            integration.refresh_token = self.encrypt(refresh_token)
        if expires_in:
            integration.expires_at = utcnow() + timedelta(seconds=int(expires_in))
        if user_id:
            integration.meli_user_id = str(user_id)
        self.db.commit()

    # === MERCADO LIVRE ===

    def get_valid_ml_token(self, integration: MarketplaceIntegration) -> Optional[str]:
        """Token válido do ML, renovando antes se estiver expirado"""
        if self.is_expired(integration):
            logger.info(f"🔄 Token ML expirado para integração {integration.id}, renovando...")
            refreshed = self.refresh_ml_token(integration)
            if refreshed:
                return refreshed
        return self.get_access_token(integration)

    def refresh_ml_token(self, integration: MarketplaceIntegration) -> Optional[str]:
        """Renova o token do ML usando o refresh token"""
        try:
            refresh_token = self.decrypt(integration.refresh_token)
            if not refresh_token:
                logger.error(f"Refresh token não encontrado para integração: {integration.id}")
                return None

            new_token_data = self._call_refresh_api(refresh_token)
            if not new_token_data or not new_token_data.get("access_token"):
                return None

            self.save_tokens(
                integration,
                new_token_data["access_token"],
                new_token_data.get("refresh_token"),
                new_token_data.get("expires_in"),
                new_token_data.get("user_id"),
            )
            logger.info(f"✅ Token ML renovado para integração: {integration.id}")
            return new_token_data["access_token"]

        except Exception as e:
            logger.error(f"Erro ao renovar token ML: {e}")
            self.db.rollback()
            return None

    def _call_refresh_api(self, refresh_token: str) -> Optional[Dict[str, Any]]:
        """Chama API do Mercado Livre para renovar token"""
        try:
            credentials = self.get_app_credentials(Marketplace.MERCADO_LIVRE)
            data = {
                "grant_type": "refresh_token",
                "client_id": credentials["client_id"],
                "client_secret": credentials["client_secret"],
                "refresh_token": refresh_token
            }

            headers = {
                "accept": "application/json",
                "content-type": "application/x-www-form-urlencoded"
            }

            response = requests.post(self.token_url, data=data, headers=headers, timeout=settings.http_timeout)

            if response.status_code == 200:
                logger.info("Token renovado com sucesso via API")
                return response.json()

            logger.error(f"Erro ao renovar token: {response.status_code} - {response.text}")
            return None

        except Exception as e:
            logger.error(f"Erro na API de renovação: {e}")
            return None

    # === SHOPEE ===

    def shopee_shop_id(self, integration: MarketplaceIntegration) -> Optional[str]:
        config = integration.config or {}
        return str(config.get("shopee_shop_id") or integration.meli_user_id or "") or None

    def get_valid_shopee_token(self, integration: MarketplaceIntegration) -> Optional[str]:
        if self.is_expired(integration):
            logger.info(f"🔄 Token Shopee expirado para integração {integration.id}, renovando...")
            refreshed = self.refresh_shopee_token(integration)
            if refreshed:
                return refreshed
        return self.get_access_token(integration)

    def refresh_shopee_token(self, integration: MarketplaceIntegration) -> Optional[str]:
        """Renova o token da Shopee tentando cada host configurado"""
        refresh_token = self.decrypt(integration.refresh_token)
        shop_id = self.shopee_shop_id(integration)
        if not refresh_token or not shop_id:
            logger.error(f"Refresh token/shop_id ausente para integração Shopee: {integration.id}")
            return None

        credentials = self.get_app_credentials(Marketplace.SHOPEE)
        partner_id = credentials["client_id"]
        partner_key = credentials["client_secret"]
        if not partner_id or not partner_key:
            logger.error("❌ Credenciais do app Shopee não configuradas")
            return None

        body = {"shop_id": int(shop_id), "refresh_token": refresh_token, "partner_id": int(partner_id)}

        for host in settings.shopee_hosts:
            try:
                timestamp = int(time.time())
                params = shopee_signature.signed_params(partner_id, partner_key, SHOPEE_REFRESH_PATH, timestamp)
                response = requests.post(
                    f"{host}{SHOPEE_REFRESH_PATH}",
                    params=params,
                    json=body,
                    timeout=settings.http_timeout
                )
                payload = response.json() if response.content else {}
                access_token = payload.get("access_token") or (payload.get("response") or {}).get("access_token")

                if response.status_code == 200 and access_token and not payload.get("error"):
                    new_refresh = payload.get("refresh_token") or (payload.get("response") or {}).get("refresh_token")
                    ttl = payload.get("expire_in") or payload.get("expires_in") or SHOPEE_DEFAULT_TTL
                    self.save_tokens(integration, access_token, new_refresh, ttl)
                    logger.info(f"✅ Token Shopee renovado para integração {integration.id} via {host}")
                    return access_token

                logger.warning(f"⚠️ Falha ao renovar token Shopee em {host}: {response.status_code} - {payload.get('error')} {payload.get('message')}")
            except (requests.RequestException, ValueError) as e:
                logger.warning(f"⚠️ Erro de rede ao renovar token Shopee em {host}: {e}")

        logger.error(f"❌ Não foi possível renovar token Shopee da integração {integration.id}")
        return None
