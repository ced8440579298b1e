"""
Cliente HTTP da API do Mercado Livre com renovação silenciosa de token
"""
import logging
from typing import Any, Dict, Optional

import requests
from sqlalchemy.orm import Session

from orderhub.config.settings import settings
from orderhub.models.marketplace_models import MarketplaceIntegration
from orderhub.services.token_manager import TokenManager
from orderhub.utils.errors import MarketplaceAPIError, TokenRefreshError

logger = logging.getLogger(__name__)


class MercadoLivreClient:
    """Chamadas autenticadas; em 401/403 renova o token e repete uma única vez"""

    def __init__(self, db: Session, integration: MarketplaceIntegration, token_manager: Optional[TokenManager] = None):
        self.db = db
        self.integration = integration
        self.token_manager = token_manager or TokenManager(db)
        self.base_url = settings.ml_api_base_url
        self._access_token: Optional[str] = None

    @property
    def access_token(self) -> str:
        if not self._access_token:
            self._access_token = self.token_manager.get_valid_ml_token(self.integration)
            if not self._access_token:
                raise TokenRefreshError(f"Integração {self.integration.id} sem access token válido")
        return self._access_token

    def get(self, path: str, params: Optional[Dict[str, Any]] = None,
            headers: Optional[Dict[str, str]] = None) -> requests.Response:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        response = self._send(url, params, headers)
        if response.status_code in (401, 403):
            logger.warning(f"⚠️ ML respondeu {response.status_code} em {path}, renovando token...")
            new_token = self.token_manager.refresh_ml_token(self.integration)
            if new_token:
                self._access_token = new_token
                response = self._send(url, params, headers)
        return response

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None, required: bool = True) -> Optional[Any]:
        """GET que devolve o JSON; levanta MarketplaceAPIError quando required"""
        response = self.get(path, params, headers)
        if response.ok:
            return response.json() if response.content else None
        if required:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            error_code = payload.get("error") if isinstance(payload, dict) else None
            raise MarketplaceAPIError(
                f"Mercado Livre {path} falhou: {response.status_code}",
                status_code=response.status_code,
                error_code=error_code,
                payload=payload,
            )
        logger.warning(f"⚠️ ML {path} retornou {response.status_code}")
        return None

    def _send(self, url: str, params: Optional[Dict[str, Any]], headers: Optional[Dict[str, str]]) -> requests.Response:
        request_headers = {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}
        if headers:
            request_headers.update(headers)
        return requests.get(url, params=params, headers=request_headers, timeout=settings.http_timeout)
