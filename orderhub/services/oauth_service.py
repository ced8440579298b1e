"""
Fluxo OAuth de conexão de lojas (Mercado Livre com PKCE e Shopee auth_partner)
"""
import base64
import hashlib
import json
import logging
import secrets
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orderhub.config.settings import settings
from orderhub.models.marketplace_models import Marketplace, MarketplaceIntegration
from orderhub.services.raw_order_service import RawOrderService
from orderhub.services.token_manager import SHOPEE_DEFAULT_TTL, TokenManager
from orderhub.utils import shopee_signature
from orderhub.utils.logger import get_integration_logger
from orderhub.utils.payload import as_dict, iso_now

logger = logging.getLogger(__name__)

SHOPEE_AUTH_PATH = "/api/v2/shop/auth_partner"
SHOPEE_TOKEN_PATH = "/api/v2/auth/token/get"


def encode_state(payload: Dict[str, Any]) -> str:
    return base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_state(state: Optional[str]) -> Dict[str, Any]:
    """Decodifica o state (base64 de um JSON); state inválido vira {}"""
    if not state:
        return {}
    try:
        padded = state + "=" * (-len(state) % 4)
        return as_dict(json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")))
    except (ValueError, UnicodeDecodeError):
        return {}


def pkce_pair() -> Dict[str, str]:
    """verifier aleatório + challenge S256 (base64url sem padding)"""
    verifier = secrets.token_urlsafe(64)[:96]
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    return {"verifier": verifier, "challenge": challenge}


class OAuthService:
    """Conecta lojas e mantém as integrações em marketplace_integrations"""

    def __init__(self, db: Session):
        self.db = db
        self.token_manager = TokenManager(db)

    # === MERCADO LIVRE ===

    def ml_start(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params = as_dict(params)
        organization_id = params.get("organizationId")
        if not organization_id:
            return {"ok": False, "error": "Missing organizationId", "status_code": 400}

        credentials = self.token_manager.get_app_credentials(Marketplace.MERCADO_LIVRE)
        if not credentials["client_id"]:
            return {"ok": False, "error": "Mercado Livre app not configured", "status_code": 500}

        redirect_uri = params.get("redirect_uri") or settings.ml_redirect_uri
        pkce = pkce_pair()
        state = encode_state({
            "organizationId": organization_id,
            "storeName": params.get("storeName"),
            "connectedByUserId": params.get("connectedByUserId"),
            "pkce_verifier": pkce["verifier"],
            "redirect_uri": redirect_uri,
        })
        query = urlencode({
            "response_type": "code",
            "client_id": credentials["client_id"],
            "redirect_uri": redirect_uri,
            "state": state,
            "code_challenge": pkce["challenge"],
            "code_challenge_method": "S256",
        })
        auth_url = credentials.get("auth_url") or settings.ml_auth_url
        return {"ok": True, "authorization_url": f"{auth_url}?{query}", "state": state}

    def ml_callback(self, code: Optional[str], state: Optional[str]) -> Dict[str, Any]:
        """Troca o code pelo token e grava a integração"""
        if not code or not state:
            return {"ok": False, "error": "Missing code or state", "status_code": 400}
        decoded = decode_state(state)
        organization_id = decoded.get("organizationId")
        if not organization_id:
            return {"ok": False, "error": "Invalid state", "status_code": 400}

        credentials = self.token_manager.get_app_credentials(Marketplace.MERCADO_LIVRE)
        data = {
            "grant_type": "authorization_code",
            "client_id": credentials["client_id"],
            "client_secret": credentials["client_secret"],
            "code": code,
            "redirect_uri": decoded.get("redirect_uri") or settings.ml_redirect_uri,
        }
        if decoded.get("pkce_verifier"):
            data["code_verifier"] = decoded["pkce_verifier"]
        headers = {
            "accept": "application/json",
            "content-type": "application/x-www-form-urlencoded",
        }

        try:
            response = requests.post(settings.ml_token_url, data=data, headers=headers, timeout=settings.http_timeout)
            payload = response.json() if response.content else {}
        except (requests.RequestException, ValueError) as e:
            logger.error(f"❌ Erro ao trocar code por token ML: {e}")
            return {"ok": False, "error": "Token exchange failed", "status_code": 502}

        if response.status_code != 200 or not payload.get("access_token"):
            logger.error(f"❌ Troca de token ML recusada: {response.status_code} - {payload}")
            get_integration_logger().log_external_api_call("mercado_livre", "oauth/token", organization_id, False,
                                                           response.status_code, str(payload.get("message") or ""))
            return {"ok": False, "error": "Token exchange failed", "details": payload, "status_code": 400}

        user_id = str(payload.get("user_id") or "")
        try:
            integration = self._upsert_integration(
                organization_id, Marketplace.MERCADO_LIVRE, user_id, decoded,
                payload["access_token"], payload.get("refresh_token"), payload.get("expires_in"),
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Erro ao salvar integração ML: {e}")
            return {"ok": False, "error": "Failed to save integration", "status_code": 500}

        logger.info(f"✅ Conta ML {user_id} conectada à organização {organization_id}")
        return {"ok": True, "integration_id": integration.id}

    # === SHOPEE ===

    def shopee_start(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params = as_dict(params)
        organization_id = params.get("organizationId")
        if not organization_id:
            return {"ok": False, "error": "Missing organizationId", "status_code": 400}

        credentials = self.token_manager.get_app_credentials(Marketplace.SHOPEE)
        partner_id, partner_key = credentials["client_id"], credentials["client_secret"]
        if not partner_id or not partner_key:
            return {"ok": False, "error": "Shopee app not configured", "status_code": 500}

        state = encode_state({
            "organizationId": organization_id,
            "storeName": params.get("storeName"),
            "connectedByUserId": params.get("connectedByUserId"),
        })
        redirect_base = params.get("redirect_uri") or settings.shopee_redirect_uri
        separator = "&" if "?" in redirect_base else "?"
        redirect = f"{redirect_base}{separator}{urlencode({'state': state})}"

        timestamp = int(time.time())
        query = shopee_signature.signed_params(partner_id, partner_key, SHOPEE_AUTH_PATH, timestamp)
        query["redirect"] = redirect
        return {
            "ok": True,
            "authorization_url": f"{settings.shopee_hosts[0]}{SHOPEE_AUTH_PATH}?{urlencode(query)}",
            "state": state,
        }

    def shopee_callback(self, code: Optional[str], shop_id: Optional[str], state: Optional[str]) -> Dict[str, Any]:
        if not code or not shop_id:
            return {"ok": False, "error": "Missing code or shop_id", "status_code": 400}
        if not str(shop_id).isdigit():
            return {"ok": False, "error": "Invalid shop_id", "status_code": 400}
        decoded = decode_state(state)
        organization_id = decoded.get("organizationId")
        if not organization_id:
            return {"ok": False, "error": "Invalid state", "status_code": 400}

        credentials = self.token_manager.get_app_credentials(Marketplace.SHOPEE)
        partner_id, partner_key = credentials["client_id"], credentials["client_secret"]
        if not partner_id or not partner_key:
            return {"ok": False, "error": "Shopee app not configured", "status_code": 500}

        body = {"code": code, "shop_id": int(shop_id), "partner_id": int(partner_id)}
        payload: Dict[str, Any] = {}
        for host in settings.shopee_hosts:
            timestamp = int(time.time())
            query = shopee_signature.signed_params(partner_id, partner_key, SHOPEE_TOKEN_PATH, timestamp)
            try:
                response = requests.post(f"{host}{SHOPEE_TOKEN_PATH}", params=query, json=body,
                                         timeout=settings.http_timeout)
                payload = response.json() if response.content else {}
            except (requests.RequestException, ValueError) as e:
                logger.warning(f"⚠️ Erro de rede ao obter token Shopee em {host}: {e}")
                continue
            if response.status_code == 200 and payload.get("access_token") and not payload.get("error"):
                break
            logger.warning(f"⚠️ Shopee recusou token/get em {host}: {payload.get('error')} {payload.get('message')}")
        else:
            return {"ok": False, "error": "Token exchange failed", "details": payload, "status_code": 400}

        ttl = payload.get("expire_in") or payload.get("expires_in") or SHOPEE_DEFAULT_TTL
        try:
            integration = self._upsert_integration(
                organization_id, Marketplace.SHOPEE, str(shop_id), decoded,
                payload["access_token"], payload.get("refresh_token"), ttl,
                extra_config={"shopee_shop_id": str(shop_id)},
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Erro ao salvar integração Shopee: {e}")
            return {"ok": False, "error": "Failed to save integration", "status_code": 500}

        logger.info(f"✅ Loja Shopee {shop_id} conectada à organização {organization_id}")
        return {"ok": True, "integration_id": integration.id}

    # === RENOVAÇÃO ===

    def refresh(self, marketplace_name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Renovação manual do token de uma integração"""
        params = as_dict(params)
        query = self.db.query(MarketplaceIntegration).filter(MarketplaceIntegration.marketplace_name == marketplace_name)
        if params.get("integrationId"):
            query = query.filter(MarketplaceIntegration.id == params["integrationId"])
        elif params.get("organizationId"):
            query = query.filter(MarketplaceIntegration.organizations_id == params["organizationId"])
        else:
            return {"ok": False, "error": "Missing organizationId", "status_code": 400}

        integration = query.order_by(MarketplaceIntegration.expires_at.desc()).first()
        if not integration:
            return {"ok": False, "error": "Integration not found", "status_code": 404}

        if marketplace_name == Marketplace.SHOPEE:
            token = self.token_manager.refresh_shopee_token(integration)
        else:
            token = self.token_manager.refresh_ml_token(integration)
        if not token:
            return {"ok": False, "error": "Token refresh failed", "status_code": 401}

        return {
            "ok": True,
            "integration_id": integration.id,
            "expires_at": integration.expires_at.isoformat() if integration.expires_at else None,
        }

    def _upsert_integration(self, organization_id: str, marketplace_name: str, external_id: str,
                            state: Dict[str, Any], access_token: str, refresh_token: Optional[str],
                            expires_in: Any, extra_config: Optional[Dict[str, Any]] = None) -> MarketplaceIntegration:
        integration = self.db.query(MarketplaceIntegration).filter(
            MarketplaceIntegration.organizations_id == organization_id,
            MarketplaceIntegration.marketplace_name == marketplace_name,
            MarketplaceIntegration.meli_user_id == external_id,
        ).first()
        if not integration:
            integration = MarketplaceIntegration(
                organizations_id=organization_id,
                marketplace_name=marketplace_name,
                meli_user_id=external_id,
            )
            self.db.add(integration)

        config = dict(integration.config or {})
        config.update({
            "storeName": state.get("storeName"),
            "connectedByUserId": state.get("connectedByUserId"),
            "connectedAt": iso_now(),
        })
        config.update(extra_config or {})
        integration.config = config
        integration.enabled = True
        integration.company_id = RawOrderService(self.db).resolve_company_id(integration)

        # save_tokens faz o commit
        self.token_manager.save_tokens(integration, access_token, refresh_token, expires_in)
        self.db.refresh(integration)

        get_integration_logger().log_event("integration_connected", {
            "marketplace": marketplace_name,
            "external_id": external_id,
            "description": f"Integração {marketplace_name} {external_id} conectada",
        }, organization_id=organization_id)
        return integration
