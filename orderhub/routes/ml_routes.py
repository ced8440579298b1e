"""
Rotas Mercado Livre: OAuth, sincronização, processamento e webhook
"""
import logging
from typing import Any, List, Optional, Union

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from orderhub.config.database import get_db
from orderhub.config.settings import settings
from orderhub.controllers.ml_controller import MLController
from orderhub.middleware.internal_auth import require_internal_key
from orderhub.utils.http import read_json, service_response
from orderhub.utils.logger import correlation_id_from_headers

logger = logging.getLogger(__name__)

ml_router = APIRouter()

internal = [Depends(require_internal_key)]


class MLSyncOrdersPayload(BaseModel):
    organizationId: Optional[str] = None
    seller_id: Optional[Union[str, int]] = None
    full: bool = False
    status: Optional[str] = None
    order_ids: Optional[List[Any]] = None


class MLSyncItemsPayload(BaseModel):
    organizationId: Optional[str] = None


class ProcessPresentedPayload(BaseModel):
    raw_id: Optional[str] = None
    order_id: Optional[Union[str, int]] = None
    marketplace_order_id: Optional[Union[str, int]] = None
    status_only: bool = False
    organizationId: Optional[str] = None


# === OAUTH ===

@ml_router.post("/oauth/start", dependencies=internal)
async def ml_oauth_start(request: Request, db: Session = Depends(get_db)):
    """Gera a URL de autorização (PKCE S256)"""
    params = await read_json(request)
    return service_response(MLController(db).start_auth(params))


@ml_router.get("/oauth/callback")
async def ml_oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """Callback do ML: troca o code, grava a integração e redireciona para o app"""
    if error:
        logger.warning(f"⚠️ Autorização ML negada: {error}")
        return JSONResponse(status_code=400, content={"ok": False, "error": error})

    result = MLController(db).callback(code, state)
    if result.get("ok"):
        return RedirectResponse(url=f"{settings.site_url}/aplicativos/conectados?connected=mercado_livre", status_code=302)
    return service_response(result)


@ml_router.post("/oauth/refresh", dependencies=internal)
async def ml_oauth_refresh(request: Request, db: Session = Depends(get_db)):
    params = await read_json(request)
    return service_response(MLController(db).refresh(params))


# === PEDIDOS E ANÚNCIOS ===

@ml_router.post("/orders/sync", dependencies=internal)
async def ml_sync_orders(payload: MLSyncOrdersPayload, request: Request, db: Session = Depends(get_db)):
    """Sincroniza pedidos (incremental pelo watermark, full ou ids forçados)"""
    controller = MLController(db, correlation_id_from_headers(request.headers))
    result = controller.sync_orders(
        organization_id=payload.organizationId,
        seller_id=str(payload.seller_id) if payload.seller_id is not None else None,
        full=payload.full,
        status=payload.status,
        order_ids=payload.order_ids,
    )
    return service_response(result)


@ml_router.post("/items/sync", dependencies=internal)
async def ml_sync_items(payload: MLSyncItemsPayload, db: Session = Depends(get_db)):
    return service_response(MLController(db).sync_items(payload.organizationId))


@ml_router.post("/orders/process-presented", dependencies=internal)
async def ml_process_presented(payload: ProcessPresentedPayload, request: Request, db: Session = Depends(get_db)):
    """Reprocessa o pedido apresentado a partir do bruto"""
    order_id = payload.order_id or payload.marketplace_order_id
    controller = MLController(db, correlation_id_from_headers(request.headers))
    result = controller.process_presented(
        raw_id=payload.raw_id,
        order_id=str(order_id) if order_id is not None else None,
        status_only=payload.status_only,
        organization_id=payload.organizationId,
    )
    return service_response(result)


# === WEBHOOK ===

@ml_router.post("/webhook")
async def ml_webhook(request: Request, db: Session = Depends(get_db)):
    """Notificações do ML (topic orders_v2)"""
    notification = await read_json(request)
    logger.info(f"📬 Notificação ML recebida: topic={notification.get('topic')} resource={notification.get('resource')}")
    controller = MLController(db, correlation_id_from_headers(request.headers))
    return service_response(controller.handle_notification(notification))
