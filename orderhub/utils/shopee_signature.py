"""
Assinatura HMAC-SHA256 da Shopee Open Platform v2
"""
import hashlib
import hmac
from typing import Optional

# Chamadas públicas/de autenticação não levam access_token nem shop_id na assinatura
PUBLIC_PATHS = {
    "/api/v2/shop/auth_partner",
    "/api/v2/auth/token/get",
    "/api/v2/auth/access_token/get",
}


def sign(partner_key: str, base_string: str) -> str:
    digest = hmac.new(partner_key.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest().upper()


def base_string(partner_id, path: str, timestamp: int, access_token: Optional[str] = None,
                shop_id=None) -> str:
    if path in PUBLIC_PATHS:
        return f"{partner_id}{path}{timestamp}"
    return f"{partner_id}{path}{timestamp}{access_token or ''}{shop_id or ''}"


def signed_params(partner_id, partner_key: str, path: str, timestamp: int,
                  access_token: Optional[str] = None, shop_id=None) -> dict:
    """Parâmetros comuns de query para uma chamada assinada"""
    params = {
        "partner_id": int(partner_id),
        "timestamp": timestamp,
        "sign": sign(partner_key, base_string(partner_id, path, timestamp, access_token, shop_id)),
    }
    if path not in PUBLIC_PATHS:
        params["access_token"] = access_token
        params["shop_id"] = int(shop_id)
    return params
