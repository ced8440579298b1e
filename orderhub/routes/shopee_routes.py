"""
Rotas Shopee: OAuth, sincronização, processamento, envio e webhook
"""
import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from orderhub.config.database import get_db
from orderhub.config.settings import settings
from orderhub.controllers.shopee_controller import ShopeeController
from orderhub.middleware.internal_auth import require_internal_key
from orderhub.utils.http import read_json, service_response
from orderhub.utils.logger import correlation_id_from_headers

logger = logging.getLogger(__name__)

shopee_router = APIRouter()

internal = [Depends(require_internal_key)]


class ShopeeProcessPresentedPayload(BaseModel):
    raw_id: Optional[str] = None
    order_id: Optional[str] = None
    marketplace_order_id: Optional[str] = None
    order_sn: Optional[str] = None
    status_only: bool = False
    organizationId: Optional[str] = None


# === OAUTH ===

@shopee_router.post("/oauth/start", dependencies=internal)
async def shopee_oauth_start(request: Request, db: Session = Depends(get_db)):
    """URL auth_partner assinada"""
    params = await read_json(request)
    return service_response(ShopeeController(db).start_auth(params))


@shopee_router.get("/oauth/callback")
async def shopee_oauth_callback(
    code: Optional[str] = Query(None),
    shop_id: Optional[Union[str, int]] = Query(None),
    state: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    result = ShopeeController(db).callback(code, str(shop_id) if shop_id is not None else None, state)
    if result.get("ok"):
        return RedirectResponse(url=f"{settings.site_url}/aplicativos/conectados?connected=shopee", status_code=302)
    return service_response(result)


@shopee_router.post("/oauth/refresh", dependencies=internal)
async def shopee_oauth_refresh(request: Request, db: Session = Depends(get_db)):
    params = await read_json(request)
    return service_response(ShopeeController(db).refresh(params))


# === PEDIDOS ===

@shopee_router.post("/orders/sync", dependencies=internal)
async def shopee_sync_orders(request: Request, db: Session = Depends(get_db)):
    """Sincroniza pedidos por janela de tempo (padrão: últimas 24h)"""
    params = await read_json(request)
    controller = ShopeeController(db, correlation_id_from_headers(request.headers))
    return service_response(controller.sync_orders(params))


@shopee_router.post("/orders/process-presented", dependencies=internal)
async def shopee_process_presented(payload: ShopeeProcessPresentedPayload, request: Request,
                                   db: Session = Depends(get_db)):
    controller = ShopeeController(db, correlation_id_from_headers(request.headers))
    result = controller.process_presented(
        raw_id=payload.raw_id,
        order_id=payload.order_id or payload.marketplace_order_id or payload.order_sn,
        status_only=payload.status_only,
        organization_id=payload.organizationId,
    )
    return service_response(result)


@shopee_router.post("/orders/arrange-shipment", dependencies=internal)
async def shopee_arrange_shipment(request: Request, db: Session = Depends(get_db)):
    """Programa o envio (ship_order), busca rastreio e gera a etiqueta"""
    params = await read_json(request)
    controller = ShopeeController(db, correlation_id_from_headers(request.headers))
    return service_response(controller.arrange_shipment(params))


# === WEBHOOK ===

@shopee_router.post("/webhook")
async def shopee_webhook(request: Request, db: Session = Depends(get_db)):
    """Push da Shopee; sempre responde 200 para evitar reenvio"""
    payload = await read_json(request)
    controller = ShopeeController(db, correlation_id_from_headers(request.headers))
    result = controller.handle_webhook(payload)
    return JSONResponse(status_code=200, content=jsonable_encoder(result))
