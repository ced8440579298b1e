"""
Sincronização de pedidos da Shopee (get_order_list + get_order_detail + escrow) e webhook de pedidos
"""
import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from orderhub.models.marketplace_models import Marketplace, MarketplaceIntegration
from orderhub.services.presented_order_service import PresentedOrderService
from orderhub.services.raw_order_service import RawOrderService
from orderhub.services.shopee_client import ShopeeClient
from orderhub.services.token_manager import TokenManager
from orderhub.utils.errors import MarketplaceAPIError, TokenRefreshError
from orderhub.utils.logger import SyncTrace, get_integration_logger
from orderhub.utils.payload import as_dict, as_list, epoch_to_datetime, get_path, get_str, try_parse_json, utcnow

logger = logging.getLogger(__name__)

LIST_PATH = "/api/v2/order/get_order_list"
DETAIL_PATH = "/api/v2/order/get_order_detail"
ESCROW_PATH = "/api/v2/payment/get_escrow_detail"

DAY = 86400
MAX_WINDOW = 15 * DAY
DETAIL_BATCH_SIZE = 50
MAX_LIST_PAGES = 100
ALLOWED_ORDER_STATUSES = {
    "UNPAID", "READY_TO_SHIP", "PROCESSED", "SHIPPED", "COMPLETED", "IN_CANCEL", "CANCELLED", "INVOICE_PENDING",
}
DETAIL_OPTIONAL_FIELDS = ",".join([
    "buyer_user_id", "buyer_username", "estimated_shipping_fee", "recipient_address", "actual_shipping_fee",
    "goods_to_declare", "note", "note_update_time", "item_list", "pay_time", "dropshipper", "dropshipper_phone",
    "split_up", "buyer_cancel_reason", "cancel_by", "cancel_reason", "actual_shipping_fee_confirmed",
    "buyer_cpf_id", "fulfillment_flag", "pickup_done_time", "package_list", "shipping_carrier", "payment_method",
    "total_amount", "invoice_data", "order_chargeable_weight_gram", "return_request_due_date", "edt", "payment_info",
])

ORDER_SN_PATHS = (
    "order_sn", "ordersn", "ordersn_list.0", "order_sn_list.0", "data.order_sn", "data.ordersn",
    "msg.order_sn", "msg.ordersn", "message.order_sn", "message.ordersn", "order.order_sn", "orders.0.order_sn",
)
SHOP_ID_PATHS = ("shop_id", "data.shop_id", "msg.shop_id", "merchant_id", "shopid")


def _parse_nested(payload: Any) -> Any:
    """Decodifica strings JSON aninhadas nas chaves usuais do push da Shopee"""
    if isinstance(payload, str):
        payload = try_parse_json(payload)
    if not isinstance(payload, dict):
        return payload
    parsed = dict(payload)
    for key in ("data", "msg", "message", "order", "orders"):
        if isinstance(parsed.get(key), str):
            parsed[key] = try_parse_json(parsed[key])
    return parsed


def detect_order_sn(payload: Any) -> Optional[str]:
    payload = _parse_nested(payload)
    for path in ORDER_SN_PATHS:
        value = get_str(payload, path)
        if value:
            return value
    return None


def detect_shop_id(payload: Any) -> Optional[str]:
    payload = _parse_nested(payload)
    for path in SHOP_ID_PATHS:
        value = get_str(payload, path)
        if value:
            return value
    return None


def parse_order_sn_list(value: Any) -> List[str]:
    """Lista ou CSV de order_sn"""
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v or "").strip()]
    if isinstance(value, str) and value.strip():
        return [s for s in re.split(r"[\s,]+", value.strip()) if s]
    return []


def resolve_window(time_from: Any = None, time_to: Any = None, now: Optional[int] = None) -> Tuple[int, int, bool]:
    """Janela (time_from, time_to, explícita): padrão 24h, limites invertidos trocados, máximo 15 dias"""
    now = int(now if now is not None else time.time())
    explicit = time_from not in (None, "") or time_to not in (None, "")
    try:
        start = int(time_from) if time_from not in (None, "") else now - DAY
    except (TypeError, ValueError):
        start = now - DAY
    try:
        end = int(time_to) if time_to not in (None, "") else now
    except (TypeError, ValueError):
        end = now
    if start > end:
        start, end = end, start
    if end - start > MAX_WINDOW:
        start = end - MAX_WINDOW
    return start, end, explicit


def read_order_list(payload: Any) -> List[Dict[str, Any]]:
    for path in ("order_list", "response.order_list", "data.order_list"):
        value = get_path(payload, path)
        if isinstance(value, list):
            return value
    return []


def _has_more(payload: Any) -> bool:
    return bool(get_path(payload, "more") or get_path(payload, "response.more") or get_path(payload, "data.more"))


def _next_cursor(payload: Any) -> Optional[str]:
    return get_str(payload, "next_cursor") or get_str(payload, "response.next_cursor") or get_str(payload, "data.next_cursor")


def _order_sn_of(order: Dict[str, Any]) -> str:
    return str(order.get("order_sn") or order.get("ordersn") or "").strip()


class ShopeeOrdersService:
    """Busca pedidos Shopee por janela de tempo e grava bruto + apresentado"""

    def __init__(self, db: Session, correlation_id: Optional[str] = None):
        self.db = db
        self.trace = SyncTrace(correlation_id, logger)
        self.raw_orders = RawOrderService(db)
        self.token_manager = TokenManager(db)

    def find_integrations(self, organization_id: Optional[str] = None,
                          shop_id: Optional[str] = None) -> List[MarketplaceIntegration]:
        query = self.db.query(MarketplaceIntegration).filter(MarketplaceIntegration.marketplace_name == Marketplace.SHOPEE)
        if organization_id:
            query = query.filter(MarketplaceIntegration.organizations_id == organization_id)
        integrations = query.all()
        if shop_id:
            integrations = [i for i in integrations if self.token_manager.shopee_shop_id(i) == str(shop_id)]
        return integrations

    # === SINCRONIZAÇÃO ===

    def sync_orders(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params = as_dict(params)
        organization_id = params.get("organizationId")
        shop_id = params.get("shop_id") or params.get("shopId")

        integrations = self.find_integrations(organization_id, shop_id)
        if not integrations:
            return {"ok": False, "error": "No Shopee integrations found", "correlationId": self.trace.correlation_id,
                    "status_code": 404}

        time_from, time_to, explicit = resolve_window(params.get("time_from") or params.get("timeFrom"),
                                                      params.get("time_to") or params.get("timeTo"))
        list_options = self._list_options(params)
        order_sn_list = parse_order_sn_list(params.get("order_sn_list") or params.get("orderSnList"))
        order_sn = params.get("order_sn") or params.get("orderSn")
        if not order_sn_list and order_sn:
            order_sn_list = [str(order_sn)]

        results = []
        for integration in integrations:
            if not self.token_manager.shopee_shop_id(integration):
                logger.warning(f"⚠️ Integração Shopee {integration.id} sem shop_id, ignorando")
                continue
            results.append(self._sync_integration(integration, time_from, time_to, explicit, list_options, order_sn_list))

        get_integration_logger().log_event("shopee_orders_sync", {"results": results}, organization_id=organization_id,
                                           success=all(not r.get("error") for r in results))
        return {"ok": True, "results": results, "correlationId": self.trace.correlation_id}

    @staticmethod
    def _list_options(params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            page_size = int(params.get("page_size") or 50)
        except (TypeError, ValueError):
            page_size = 50
        options: Dict[str, Any] = {
            "time_range_field": params.get("time_range_field") or "update_time",
            "page_size": max(1, min(100, page_size)),
        }
        order_status = str(params.get("order_status") or "").strip().upper()
        if order_status in ALLOWED_ORDER_STATUSES:
            options["order_status"] = order_status
        if str(params.get("response_optional_fields") or "").strip().lower() == "order_status":
            options["response_optional_fields"] = "order_status"
        pending = params.get("request_order_status_pending")
        if pending is not None:
            options["request_order_status_pending"] = str(pending).lower() in ("1", "true", "yes")
        channel = str(params.get("logistics_channel_id") or "").strip()
        if channel.isdigit():
            options["logistics_channel_id"] = int(channel)
        return options

    def _sync_integration(self, integration: MarketplaceIntegration, time_from: int, time_to: int, explicit: bool,
                          list_options: Dict[str, Any], order_sn_list: List[str]) -> Dict[str, Any]:
        client = ShopeeClient(self.db, integration, self.token_manager)
        summary: Dict[str, Any] = {"integration_id": integration.id, "fetched": 0, "updated": 0}
        list_entries: Dict[str, Dict[str, Any]] = {}

        try:
            if order_sn_list:
                order_sns = order_sn_list
            else:
                order_sns = self._list_order_sns(client, list_options, time_from, time_to, list_entries)
                if not order_sns and not explicit:
                    now = int(time.time())
                    fallbacks = (("create_time", now - 7 * DAY), ("update_time", now - 14 * DAY))
                    for range_field, start in fallbacks:
                        options = dict(list_options, time_range_field=range_field)
                        order_sns = self._list_order_sns(client, options, start, now, list_entries)
                        self.trace.add("list_fallback", integration_id=integration.id, range_field=range_field,
                                       fetched=len(order_sns))
                        if order_sns:
                            break
        except (MarketplaceAPIError, TokenRefreshError) as e:
            logger.error(f"❌ Erro ao listar pedidos Shopee da integração {integration.id}: {e}")
            summary["error"] = str(e)
            return summary

        summary["fetched"] = len(order_sns)
        company_id = self.raw_orders.resolve_company_id(integration)

        for start in range(0, len(order_sns), DETAIL_BATCH_SIZE):
            batch = order_sns[start:start + DETAIL_BATCH_SIZE]
            try:
                details = self._order_details(client, batch)
            except (MarketplaceAPIError, TokenRefreshError) as e:
                logger.error(f"❌ Erro no get_order_detail ({len(batch)} pedidos): {e}")
                summary["error"] = str(e)
                continue

            for detail in details:
                order_sn = _order_sn_of(detail)
                if not order_sn:
                    continue
                combined = {"order_list_item": list_entries.get(order_sn), "order_detail": detail}
                escrow = self._escrow_detail(client, order_sn)
                if escrow:
                    combined["escrow_detail"] = escrow
                raw, _ = self._upsert_raw(integration, company_id, order_sn, combined, detail)
                summary["updated"] += 1
                PresentedOrderService(self.db, self.trace.correlation_id).process(Marketplace.SHOPEE, raw_id=raw.id)

        logger.info(f"✅ Shopee integração {integration.id}: {summary['fetched']} encontrados, {summary['updated']} gravados")
        return summary

    def _list_order_sns(self, client: ShopeeClient, options: Dict[str, Any], time_from: int, time_to: int,
                        list_entries: Dict[str, Dict[str, Any]]) -> List[str]:
        order_sns: List[str] = []
        cursor = None
        for _ in range(MAX_LIST_PAGES):
            params = dict(options, time_from=time_from, time_to=time_to)
            if "request_order_status_pending" in params:
                params["request_order_status_pending"] = "true" if params["request_order_status_pending"] else "false"
            if cursor:
                params["cursor"] = cursor
            payload = client.get(LIST_PATH, params=params)
            for entry in read_order_list(payload):
                order_sn = _order_sn_of(as_dict(entry))
                if order_sn and order_sn not in list_entries:
                    list_entries[order_sn] = entry
                    order_sns.append(order_sn)
            if not _has_more(payload):
                break
            cursor = _next_cursor(payload)
            if not cursor:
                break
        return order_sns

    def _order_details(self, client: ShopeeClient, order_sns: List[str]) -> List[Dict[str, Any]]:
        payload = client.get(DETAIL_PATH, params={
            "order_sn_list": ",".join(order_sns),
            "request_order_status_pending": "true",
            "response_optional_fields": DETAIL_OPTIONAL_FIELDS,
        })
        return [as_dict(o) for o in read_order_list(payload)]

    def _escrow_detail(self, client: ShopeeClient, order_sn: str) -> Optional[Dict[str, Any]]:
        try:
            return client.get(ESCROW_PATH, params={"order_sn": order_sn})
        except (MarketplaceAPIError, TokenRefreshError) as e:
            logger.warning(f"⚠️ Escrow indisponível para {order_sn}: {e}")
            return None

    def _upsert_raw(self, integration: MarketplaceIntegration, company_id: Optional[str], order_sn: str,
                    combined: Dict[str, Any], detail: Dict[str, Any]):
        # chaves gravadas por outros fluxos (ex.: shipping_parameter do arrange) são mantidas
        existing = self.raw_orders.find(integration.organizations_id, Marketplace.SHOPEE, order_sn)
        data = dict(as_dict(existing.data)) if existing else {}
        data.update({key: value for key, value in combined.items() if value is not None})
        fields = {
            "company_id": company_id,
            "status": str(detail.get("order_status") or detail.get("status") or "").strip() or None,
            "status_detail": None,
            "order_items": as_list(detail.get("item_list")),
            "data": data,
            "date_created": epoch_to_datetime(detail.get("create_time")),
            "last_updated": epoch_to_datetime(detail.get("update_time")),
            "last_synced_at": utcnow(),
        }
        return self.raw_orders.upsert(integration.organizations_id, Marketplace.SHOPEE, order_sn, fields)

    # === WEBHOOK ===

    def handle_webhook(self, payload: Any) -> Dict[str, Any]:
        """Push de pedido: identifica order_sn/shop_id, busca detalhe e escrow, grava e processa"""
        correlation_id = self.trace.correlation_id
        order_sn = detect_order_sn(payload)
        shop_id = detect_shop_id(payload)
        self.trace.add("webhook_received", order_sn=order_sn, shop_id=shop_id)
        if not order_sn:
            return {"ok": True, "ignored": True, "reason": "missing_order_sn", "correlationId": correlation_id}

        integrations = self.find_integrations(shop_id=shop_id) if shop_id else self.find_integrations()
        if not integrations:
            return {"ok": False, "error": "Integration not found", "correlationId": correlation_id}
        integration = integrations[0]
        if not shop_id:
            logger.warning(f"⚠️ Webhook Shopee {order_sn} sem shop_id; usando integração {integration.id} "
                           f"da organização {integration.organizations_id} (1 de {len(integrations)})")
            self.trace.add("integration_fallback", integration_id=integration.id,
                           organization_id=integration.organizations_id, candidates=len(integrations))
        client = ShopeeClient(self.db, integration, self.token_manager)

        try:
            details = self._order_details(client, [order_sn])
        except (MarketplaceAPIError, TokenRefreshError) as e:
            logger.error(f"❌ Falha ao buscar pedido Shopee {order_sn} do webhook: {e}")
            return {"ok": False, "error": "Failed to fetch order detail", "correlationId": correlation_id}
        detail = details[0] if details else {}

        combined: Dict[str, Any] = {"order_detail": detail or None, "notification": _parse_nested(payload)}
        escrow = self._escrow_detail(client, order_sn)
        if escrow:
            combined["escrow_detail"] = escrow

        raw, _ = self._upsert_raw(integration, self.raw_orders.resolve_company_id(integration), order_sn, combined, detail)
        result = PresentedOrderService(self.db, correlation_id).process(Marketplace.SHOPEE, raw_id=raw.id)

        get_integration_logger().log_order_processed(Marketplace.SHOPEE, order_sn, integration.organizations_id,
                                                     bool(result.get("ok")), "webhook")
        return {"ok": True, "order_id": order_sn, "raw_id": raw.id, "correlationId": correlation_id}
