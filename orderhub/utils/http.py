"""
Helpers HTTP compartilhados pelas rotas
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect

logger = logging.getLogger(__name__)


async def read_json(request: Request) -> Dict[str, Any]:
    """Corpo JSON da requisição; corpo vazio ou inválido vira {}"""
    try:
        body = await request.body()
    except ClientDisconnect:
        logger.warning("⚠️ ClientDisconnect: corpo da requisição ausente")
        return {}
    if not body:
        return {}
    try:
        data = json.loads(body)
    except ValueError:
        logger.warning("⚠️ Corpo da requisição não é JSON válido")
        return {}
    return data if isinstance(data, dict) else {"payload": data}


def service_response(result: Dict[str, Any], error_status: Optional[int] = None) -> JSONResponse:
    """
    Converte o dict {ok, ...} do service em JSONResponse.
    status_code do resultado define o HTTP de erro; sem ele usa error_status (padrão 500).
    """
    result = dict(result)
    status_code = result.pop("status_code", None)
    if result.get("ok"):
        return JSONResponse(status_code=200, content=jsonable_encoder(result))
    return JSONResponse(status_code=status_code or error_status or 500, content=jsonable_encoder(result))
