"""
Sincronização de pedidos do Mercado Livre (busca incremental e notificações orders_v2)
"""
import base64
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import requests
from sqlalchemy import func
from sqlalchemy.orm import Session

from orderhub.models.marketplace_models import Marketplace, MarketplaceIntegration, MarketplaceOrderRaw
from orderhub.services.mercadolibre_client import MercadoLivreClient
from orderhub.services.presented_order_service import PresentedOrderService
from orderhub.services.raw_order_service import RawOrderService
from orderhub.utils.errors import MarketplaceAPIError, TokenRefreshError
from orderhub.utils.logger import SyncTrace, get_integration_logger
from orderhub.utils.payload import as_dict, as_list, iso_now, normalize_order_numbers, parse_datetime, utcnow

logger = logging.getLogger(__name__)

PAGE_LIMIT = 50
MAX_PAGES = 200
WATERMARK_OVERLAP = timedelta(minutes=10)
TEST_ORDER_ID = "2000010000000000"


def forced_order_ids(order_ids: Any) -> List[str]:
    """IDs numéricos, sem repetição, ignorando o pedido de teste do ML"""
    result: List[str] = []
    for value in as_list(order_ids):
        text = str(value).strip()
        if text.isdigit() and text != TEST_ORDER_ID and text not in result:
            result.append(text)
    return result


def has_billing_charges(billing_info: Any) -> bool:
    bi = as_dict(billing_info)
    if not bi:
        return False
    senders = bi.get("senders")
    carriers = bi.get("carriers")
    return bool(
        as_list(bi.get("shipments"))
        or bi.get("receiver")
        or (len(senders) > 0 if isinstance(senders, list) else bi.get("sender"))
        or (len(carriers) > 0 if isinstance(carriers, list) else bi.get("carrier"))
    )


def order_updated_at(order: Dict[str, Any]):
    return parse_datetime(order.get("last_updated") or order.get("date_last_updated") or order.get("date_created"))


class MLOrdersService:
    """Sincroniza pedidos do ML para marketplace_orders_raw e processa o pedido apresentado"""

    def __init__(self, db: Session, correlation_id: Optional[str] = None):
        self.db = db
        self.trace = SyncTrace(correlation_id, logger)
        self.raw_orders = RawOrderService(db)

    # === INTEGRAÇÃO ===

    def find_integration(self, organization_id: Optional[str] = None,
                         seller_id: Optional[str] = None) -> Optional[MarketplaceIntegration]:
        query = self.db.query(MarketplaceIntegration).filter(
            MarketplaceIntegration.marketplace_name == Marketplace.MERCADO_LIVRE)
        if organization_id:
            query = query.filter(MarketplaceIntegration.organizations_id == organization_id)
        if seller_id:
            query = query.filter(MarketplaceIntegration.meli_user_id == str(seller_id))
        return query.order_by(MarketplaceIntegration.expires_at.desc()).first()

    def watermark(self, organization_id: str):
        """max(last_updated) já gravado menos 10 minutos de sobreposição"""
        latest = self.db.query(func.max(MarketplaceOrderRaw.last_updated)).filter(
            MarketplaceOrderRaw.organizations_id == organization_id,
            MarketplaceOrderRaw.marketplace_name == Marketplace.MERCADO_LIVRE,
        ).scalar()
        return latest - WATERMARK_OVERLAP if latest else None

    # === SINCRONIZAÇÃO ===

    def sync_orders(self, organization_id: Optional[str] = None, seller_id: Optional[str] = None,
                    full: bool = False, status: Optional[str] = None,
                    order_ids: Optional[List[Any]] = None) -> Dict[str, Any]:
        if not organization_id and not seller_id:
            return {"ok": False, "error": "Missing organizationId or seller_id", "status_code": 400}

        integration = self.find_integration(organization_id, seller_id)
        if not integration:
            return {"ok": False, "error": "Integration not found", "status_code": 404}
        if not integration.meli_user_id:
            return {"ok": False, "error": "Missing meli_user_id", "status_code": 400}

        organization_id = integration.organizations_id
        company_id = self.raw_orders.resolve_company_id(integration)
        client = MercadoLivreClient(self.db, integration)
        forced = forced_order_ids(order_ids)

        logger.info(f"🔄 Sincronizando pedidos ML da organização {organization_id} (full={full}, forçados={len(forced)})")

        try:
            if forced:
                orders = [{"id": order_id} for order_id in forced]
            else:
                safe_from = None if full else self.watermark(organization_id)
                orders = self._list_orders(client, integration.meli_user_id, status, safe_from)
        except TokenRefreshError as e:
            logger.error(f"❌ Token ML indisponível para integração {integration.id}: {e}")
            return {"ok": False, "error": str(e), "status_code": 401}
        except MarketplaceAPIError as e:
            logger.error(f"❌ Erro ao listar pedidos ML: {e}")
            return {"ok": False, "error": e.error_code or str(e), "details": e.payload,
                    "status_code": e.status_code or 502}

        existing = self.raw_orders.find_many(organization_id, Marketplace.MERCADO_LIVRE,
                                             [str(o.get("id")) for o in orders if o.get("id")])

        created = updated = items_upserted = 0
        errors = []
        for order in orders:
            order_id = str(order.get("id") or "")
            if not order_id:
                continue
            if not forced and self._is_up_to_date(order, existing.get(order_id)):
                self.trace.add("order_skipped", order_id=order_id)
                continue

            try:
                raw, was_created = self._import_order(client, order_id, organization_id, company_id)
            except TokenRefreshError as e:
                logger.error(f"❌ Token ML indisponível durante a sincronização: {e}")
                return {"ok": False, "error": str(e), "status_code": 401}
            except (MarketplaceAPIError, requests.RequestException) as e:
                logger.warning(f"⚠️ Pedido ML {order_id} não importado: {e}")
                errors.append({"order_id": order_id, "error": str(e)})
                continue

            if was_created:
                created += 1
            else:
                updated += 1

            result = PresentedOrderService(self.db, self.trace.correlation_id).process(
                Marketplace.MERCADO_LIVRE, raw_id=raw.id)
            items_upserted += result.get("items_inserted") or 0

        logger.info(f"✅ Sincronização ML concluída: {created} criados, {updated} atualizados")
        get_integration_logger().log_event("ml_orders_sync", {
            "integration_id": integration.id,
            "orders_found": len(orders),
            "created": created,
            "updated": updated,
        }, organization_id=organization_id, success=not errors)

        summary = {
            "ok": True,
            "orders_found": len(orders),
            "created": created,
            "updated": updated,
            "items_upserted": items_upserted,
            "correlationId": self.trace.correlation_id,
        }
        if forced:
            summary["orders_forced"] = len(forced)
        if errors:
            summary["errors"] = errors
        return summary

    def _list_orders(self, client: MercadoLivreClient, seller_id: str, status: Optional[str], safe_from) -> List[Dict[str, Any]]:
        orders: List[Dict[str, Any]] = []
        offset = 0
        for page in range(MAX_PAGES):
            params = {"seller": seller_id, "offset": offset, "limit": PAGE_LIMIT, "sort": "date_desc"}
            if status:
                params["order.status"] = status
            if safe_from:
                params["order.last_updated.from"] = safe_from.strftime("%Y-%m-%dT%H:%M:%S.000Z")

            payload = as_dict(client.get_json("/orders/search", params=params))
            batch = as_list(payload.get("results"))
            orders.extend(batch)
            total = int(as_dict(payload.get("paging")).get("total") or 0)
            offset += len(batch)
            self.trace.add("orders_page", page=page, batch=len(batch), total=total)

            if not batch:
                break
            if safe_from:
                last_updated = order_updated_at(batch[-1])
                if last_updated and last_updated < safe_from:
                    break
            if offset >= total:
                break
        return orders

    def _is_up_to_date(self, order: Dict[str, Any], existing: Optional[MarketplaceOrderRaw]) -> bool:
        """Pula apenas pedidos sem alteração que já têm etiqueta e cobranças de envio"""
        if not existing or not existing.last_updated:
            return False
        remote = order_updated_at(order)
        if not remote:
            return False
        return remote <= existing.last_updated and existing.labels is not None and has_billing_charges(existing.billing_info)

    # === DETALHES DO PEDIDO ===

    def _import_order(self, client: MercadoLivreClient, order_id: str, organization_id: str,
                      company_id: Optional[str]):
        order = normalize_order_numbers(as_dict(client.get_json(f"/orders/{order_id}")))
        now = iso_now()

        shipment_ids = self._shipment_ids(order)
        stored = self.raw_orders.find(organization_id, Marketplace.MERCADO_LIVRE, str(order.get("id") or order_id))
        shipments = self._normalized_shipments(client, order, shipment_ids, now,
                                               stored.shipments if stored else None)
        billing_info = self._billing_info(client, shipment_ids, now)
        labels = self._labels(client, shipment_ids, now)
        if stored:
            if labels.get("error") and as_dict(stored.labels).get("cached"):
                labels = stored.labels
            if not billing_info["shipments"] and has_billing_charges(stored.billing_info):
                billing_info = stored.billing_info

        fields = self._raw_fields(order, company_id)
        fields.update({
            "shipments": shipments,
            "billing_info": billing_info,
            "labels": labels,
        })
        return self.raw_orders.upsert(organization_id, Marketplace.MERCADO_LIVRE, str(order.get("id") or order_id), fields)

    @staticmethod
    def _raw_fields(order: Dict[str, Any], company_id: Optional[str]) -> Dict[str, Any]:
        return {
            "company_id": company_id,
            "status": order.get("status"),
            "status_detail": str(order.get("status_detail")) if order.get("status_detail") else None,
            "order_items": as_list(order.get("order_items")),
            "buyer": order.get("buyer"),
            "seller": order.get("seller"),
            "payments": as_list(order.get("payments")),
            "feedback": order.get("feedback"),
            "tags": as_list(order.get("tags")),
            "data": order,
            "date_created": parse_datetime(order.get("date_created")),
            "date_closed": parse_datetime(order.get("date_closed")),
            "last_updated": parse_datetime(order.get("last_updated")),
            "last_synced_at": utcnow(),
        }

    @staticmethod
    def _shipment_ids(order: Dict[str, Any]) -> List[str]:
        ids: List[str] = []
        shipping_id = as_dict(order.get("shipping")).get("id")
        if shipping_id:
            ids.append(str(shipping_id))
        for shipment in as_list(order.get("shipments")):
            sid = as_dict(shipment).get("id") or as_dict(shipment).get("shipment_id")
            if sid and str(sid) not in ids:
                ids.append(str(sid))
        return ids

    def _optional_json(self, client: MercadoLivreClient, path: str, headers: Optional[Dict[str, str]] = None) -> Optional[Any]:
        try:
            return client.get_json(path, headers=headers, required=False)
        except requests.RequestException as e:
            logger.warning(f"⚠️ Falha ao consultar {path}: {e}")
            return None

    def _normalized_shipments(self, client: MercadoLivreClient, order: Dict[str, Any],
                              shipment_ids: List[str], now: str,
                              stored: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        # envio já gravado substitui o detalhe quando a consulta falha
        stored_by_id = {str(as_dict(s).get("id")): as_dict(s) for s in as_list(stored) if as_dict(s).get("id")}
        detailed = []
        for sid in shipment_ids:
            detail = self._optional_json(client, f"/shipments/{sid}", headers={"x-format-new": "true"})
            detail = detail or stored_by_id.get(sid)
            if detail:
                detailed.append(detail)

        base = detailed or as_list(order.get("shipments")) or ([order["shipping"]] if order.get("shipping") else [])

        normalized = []
        for shipment in base:
            shipment = dict(as_dict(shipment))
            sid = shipment.get("id") or shipment.get("shipment_id")
            tracking = costs = sla = None
            if sid:
                tracking = self._optional_json(client, f"/shipments/{sid}/tracking")
                costs = self._optional_json(client, f"/shipments/{sid}/costs")
                sla = self._optional_json(client, f"/shipments/{sid}/sla")
            sla_data = as_dict(sla or shipment.get("sla") or shipment.get("dispatch_sla"))
            shipment.update({
                "tracking": tracking if tracking is not None else shipment.get("tracking"),
                "costs": costs if costs is not None else shipment.get("costs"),
                "tracking_fetched_at": now if tracking else shipment.get("tracking_fetched_at"),
                "costs_fetched_at": now if costs else shipment.get("costs_fetched_at"),
                "sla_status": sla_data.get("status") or shipment.get("sla_status"),
                "sla_service": sla_data.get("service") or shipment.get("sla_service"),
                "sla_expected_date": sla_data.get("expected_date") or shipment.get("sla_expected_date"),
                "sla_last_updated": sla_data.get("last_updated") or shipment.get("sla_last_updated"),
                "sla_fetched_at": now if sla_data else shipment.get("sla_fetched_at"),
            })
            normalized.append(shipment)
        return normalized

    def _billing_info(self, client: MercadoLivreClient, shipment_ids: List[str], now: str) -> Dict[str, Any]:
        entries = []
        for sid in shipment_ids:
            billing = self._optional_json(client, f"/shipments/{sid}/billing_info")
            if isinstance(billing, dict):
                entries.append({"shipment_id": sid, **billing})

        receiver = None
        for entry in entries:
            if entry.get("receiver") or entry.get("receiver_tax"):
                receiver = entry.get("receiver") or entry.get("receiver_tax")
                break
        senders = []
        for entry in entries:
            if isinstance(entry.get("senders"), list):
                senders.extend(entry["senders"])
            elif entry.get("sender"):
                senders.append(entry["sender"])
        carriers = [entry.get("carrier") or entry.get("logistic") for entry in entries
                    if entry.get("carrier") or entry.get("logistic")]

        return {"fetched_at": now, "shipments": entries, "receiver": receiver, "senders": senders, "carriers": carriers}

    def _fetch_label(self, client: MercadoLivreClient, shipment_ids: List[str], response_type: str) -> Dict[str, Any]:
        params = {"shipment_ids": ",".join(shipment_ids), "response_type": response_type.upper()}
        response = client.get("/shipment_labels", params=params)
        if response.ok:
            return {
                "ok": True,
                "content_base64": base64.b64encode(response.content).decode("ascii"),
                "content_type": "application/pdf" if response_type == "pdf" else "text/plain",
                "size_bytes": len(response.content),
            }
        try:
            error = response.json()
        except ValueError:
            error = {"raw": response.text}
        return {"ok": False, "error": error}

    def _labels(self, client: MercadoLivreClient, shipment_ids: List[str], now: str) -> Dict[str, Any]:
        """Etiquetas PDF/ZPL2 em base64; nunca retorna None"""
        if not shipment_ids:
            return {"error": True, "message": "no shipments found", "shipment_ids": [], "fetched_at": now}
        try:
            pdf = self._fetch_label(client, shipment_ids, "pdf")
            zpl = self._fetch_label(client, shipment_ids, "zpl2")
        except requests.RequestException as e:
            logger.warning(f"⚠️ Falha ao buscar etiquetas {shipment_ids}: {e}")
            return {"error": True, "message": "label fetch failed", "shipment_ids": shipment_ids, "fetched_at": now}

        if not pdf["ok"] and not zpl["ok"]:
            message = as_dict(pdf.get("error")).get("message") or as_dict(zpl.get("error")).get("message") or "ML error"
            return {"error": True, "message": message, "shipment_ids": shipment_ids, "fetched_at": now}

        primary, response_type = (pdf, "pdf") if pdf["ok"] else (zpl, "zpl2")
        return {
            "cached": True,
            "response_type": response_type,
            "content_base64": primary["content_base64"],
            "content_type": primary["content_type"],
            "shipment_ids": shipment_ids,
            "fetched_at": now,
            "size_bytes": primary["size_bytes"],
            "pdf_base64": pdf.get("content_base64"),
            "pdf_size_bytes": pdf.get("size_bytes"),
            "zpl2_base64": zpl.get("content_base64"),
            "zpl2_size_bytes": zpl.get("size_bytes"),
        }

    # === NOTIFICAÇÕES ===

    def handle_notification(self, notification: Dict[str, Any]) -> Dict[str, Any]:
        """Webhook orders_v2: busca o pedido notificado, grava o bruto e processa"""
        notification = as_dict(notification)
        resource = notification.get("resource")
        user_id = notification.get("user_id")
        topic = notification.get("topic")
        if not resource or not user_id or not topic:
            return {"ok": False, "error": "Invalid notification format", "status_code": 400}
        if topic != "orders_v2":
            return {"ok": True, "ignored": True, "topic": topic}

        order_id = str(resource).replace("/orders/", "").strip("/")
        if not order_id:
            return {"ok": False, "error": "Invalid order ID in resource", "status_code": 400}

        integration = self.db.query(MarketplaceIntegration).filter(
            MarketplaceIntegration.meli_user_id == str(user_id),
            MarketplaceIntegration.marketplace_name == Marketplace.MERCADO_LIVRE,
            MarketplaceIntegration.enabled == True,  # noqa: E712
        ).first()
        if not integration:
            return {"ok": False, "error": "Integration not found", "status_code": 404}

        # mesmo caminho da sincronização: envio, cobrança e etiquetas são buscados de novo
        client = MercadoLivreClient(self.db, integration)
        try:
            raw, _ = self._import_order(client, order_id, integration.organizations_id,
                                          self.raw_orders.resolve_company_id(integration))
        except TokenRefreshError as e:
            return {"ok": False, "error": str(e), "status_code": 401}
        except (MarketplaceAPIError, requests.RequestException) as e:
            logger.error(f"❌ Falha ao buscar pedido notificado {order_id}: {e}")
            return {"ok": False, "error": "Failed to fetch order details",
                    "status_code": getattr(e, "status_code", None) or 502}

        result = PresentedOrderService(self.db, self.trace.correlation_id).process(Marketplace.MERCADO_LIVRE, raw_id=raw.id)

        get_integration_logger().log_order_processed(Marketplace.MERCADO_LIVRE, order_id, integration.organizations_id,
                                                     bool(result.get("ok")), "webhook")
        return {
            "ok": True,
            "order_id": order_id,
            "action": "updated",
            "notification_id": notification.get("_id") or notification.get("id"),
            "presented": {"ok": result.get("ok"), "items_inserted": result.get("items_inserted")},
        }
