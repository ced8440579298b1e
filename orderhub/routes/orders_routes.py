"""
Rotas comuns de pedidos: vinculação de itens e worker de estoque
"""
from typing import Optional, Union

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from orderhub.config.database import get_db
from orderhub.controllers.orders_controller import OrdersController
from orderhub.middleware.internal_auth import require_internal_key
from orderhub.utils.http import service_response
from orderhub.utils.logger import correlation_id_from_headers

orders_router = APIRouter(dependencies=[Depends(require_internal_key)])


class LinkItemPayload(BaseModel):
    order_id: Optional[str] = None
    product_id: Optional[str] = None
    item_row_id: Optional[int] = None
    external_item_id: Optional[Union[str, int]] = None
    source_card: Optional[str] = None
    permanent: bool = False


class InventoryJobsPayload(BaseModel):
    order_id: Optional[str] = None
    limit: Optional[int] = None


@orders_router.post("/items/link")
async def link_order_item(payload: LinkItemPayload, request: Request, db: Session = Depends(get_db)):
    """Vincula um item do pedido a um produto interno"""
    controller = OrdersController(db, correlation_id_from_headers(request.headers))
    result = controller.link_item(
        payload.order_id,
        payload.product_id,
        item_row_id=payload.item_row_id,
        external_item_id=str(payload.external_item_id) if payload.external_item_id is not None else None,
        source_card=payload.source_card,
        permanent=payload.permanent,
    )
    return service_response(result)


@orders_router.post("/inventory-jobs/run")
async def run_inventory_jobs(payload: InventoryJobsPayload, request: Request, db: Session = Depends(get_db)):
    controller = OrdersController(db, correlation_id_from_headers(request.headers))
    return service_response(controller.run_inventory_jobs(order_id=payload.order_id, limit=payload.limit))
