"""
Proteção das rotas internas (header X-Internal-Key)
"""
import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException

from orderhub.config.settings import settings

logger = logging.getLogger(__name__)


def require_internal_key(x_internal_key: Optional[str] = Header(None)):
    """Exige X-Internal-Key quando INTERNAL_API_KEY estiver configurada"""
    expected = settings.internal_api_key
    if not expected:
        return
    if not x_internal_key or not hmac.compare_digest(x_internal_key, expected):
        logger.warning("⚠️ Chamada interna recusada: X-Internal-Key ausente ou inválida")
        raise HTTPException(status_code=401, detail="Invalid internal key")
