"""
Cliente da Shopee Open Platform v2 (assinatura, fallback de hosts e renovação de token)
"""
import logging
import time
from typing import Any, Dict, Optional, Tuple

import requests
from sqlalchemy.orm import Session

from orderhub.config.settings import settings
from orderhub.models.marketplace_models import MarketplaceIntegration, Marketplace
from orderhub.services.token_manager import TokenManager
from orderhub.utils import shopee_signature
from orderhub.utils.errors import MarketplaceAPIError, TokenRefreshError

logger = logging.getLogger(__name__)

INVALID_TOKEN_MARKERS = ("invalid_access_token", "invalid_acceess_token")


def needs_token_refresh(status_code: Optional[int], payload: Any) -> bool:
    """401/403 ou erro de token inválido no corpo da resposta"""
    if status_code in (401, 403):
        return True
    if isinstance(payload, dict):
        text = f"{payload.get('error') or ''} {payload.get('message') or ''}".lower()
        return any(marker in text for marker in INVALID_TOKEN_MARKERS)
    return False


class ShopeeClient:
    """Chamadas assinadas em nível de loja"""

    def __init__(self, db: Session, integration: MarketplaceIntegration, token_manager: Optional[TokenManager] = None):
        self.db = db
        self.integration = integration
        self.token_manager = token_manager or TokenManager(db)
        credentials = self.token_manager.get_app_credentials(Marketplace.SHOPEE)
        self.partner_id = credentials["client_id"]
        self.partner_key = credentials["client_secret"]
        self.hosts = settings.shopee_hosts
        self.shop_id = self.token_manager.shopee_shop_id(integration)

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.call("GET", path, params=params)

    def post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.call("POST", path, body=body)

    def call(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
             body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Executa a chamada; renova o token e repete uma vez se ele for recusado"""
        if not self.partner_id or not self.partner_key:
            raise MarketplaceAPIError("Credenciais do app Shopee não configuradas")
        if not self.shop_id:
            raise MarketplaceAPIError(f"Integração {self.integration.id} sem shop_id")

        access_token = self.token_manager.get_valid_shopee_token(self.integration)
        if not access_token:
            raise TokenRefreshError(f"Integração {self.integration.id} sem access token válido")

        status_code, payload = self._request_any_host(method, path, params, body, access_token)
        if needs_token_refresh(status_code, payload):
            logger.warning(f"⚠️ Shopee recusou o token em {path}, renovando...")
            new_token = self.token_manager.refresh_shopee_token(self.integration)
            if new_token:
                status_code, payload = self._request_any_host(method, path, params, body, new_token)

        if status_code is None or status_code >= 400 or (isinstance(payload, dict) and payload.get("error")):
            error_code = payload.get("error") if isinstance(payload, dict) else None
            message = payload.get("message") if isinstance(payload, dict) else None
            raise MarketplaceAPIError(
                f"Shopee {path} falhou: {error_code or status_code} {message or ''}".strip(),
                status_code=status_code,
                error_code=error_code,
                payload=payload,
            )
        return payload

    def _request_any_host(self, method: str, path: str, params: Optional[Dict[str, Any]],
                          body: Optional[Dict[str, Any]], access_token: str) -> Tuple[Optional[int], Any]:
        last: Tuple[Optional[int], Any] = (None, {"error": "network_error", "message": "nenhum host respondeu"})
        for host in self.hosts:
            timestamp = int(time.time())
            query = shopee_signature.signed_params(
                self.partner_id, self.partner_key, path, timestamp, access_token, self.shop_id
            )
            if params:
                query.update(params)
            try:
                response = requests.request(
                    method,
                    f"{host}{path}",
                    params=query,
                    json=body if method != "GET" else None,
                    timeout=settings.http_timeout,
                )
            except requests.RequestException as e:
                logger.warning(f"⚠️ Erro de rede na Shopee ({host}{path}): {e}")
                last = (None, {"error": "network_error", "message": str(e)})
                continue

            try:
                payload = response.json()
            except ValueError:
                payload = {"error": "invalid_json", "message": response.text[:500]}

            if response.status_code < 400 and not (isinstance(payload, dict) and payload.get("error")):
                return response.status_code, payload
            last = (response.status_code, payload)
            if needs_token_refresh(response.status_code, payload):
                # token recusado: o próximo host daria o mesmo resultado
                break
        return last
