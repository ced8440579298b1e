"""
Programação de envio Shopee (ship_order, rastreio e etiqueta)
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from orderhub.models.marketplace_models import Marketplace, MarketplaceIntegration, MarketplaceOrderPresented
from orderhub.services.raw_order_service import RawOrderService
from orderhub.services.shopee_client import ShopeeClient
from orderhub.services.token_manager import TokenManager
from orderhub.utils.errors import MarketplaceAPIError, TokenRefreshError
from orderhub.utils.logger import SyncTrace, get_integration_logger
from orderhub.utils.payload import as_dict, as_list, get_path, get_str, iso_now, utcnow

logger = logging.getLogger(__name__)

SHIPPING_PARAMETER_PATH = "/api/v2/logistics/get_shipping_parameter"
SHIP_ORDER_PATH = "/api/v2/logistics/ship_order"
TRACKING_NUMBER_PATH = "/api/v2/logistics/get_tracking_number"
DOCUMENT_PARAMETER_PATH = "/api/v2/logistics/get_shipping_document_parameter"
CREATE_DOCUMENT_PATH = "/api/v2/logistics/create_shipping_document"

# grafia da própria Shopee
PACKAGE_NUMBER_NOT_NEEDED = "logistics.ship_order_not_need_pacakge_number"


def info_needed_of(data: Any) -> Dict[str, Any]:
    return as_dict(first_present(get_path(data, "shipping_parameter.response.info_needed"),
                                 get_path(data, "shipping_parameter.info_needed")))


def first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def plan_shipment(order_sn: str, data: Any) -> Dict[str, Any]:
    """
    Monta o corpo do ship_order a partir do shipping_parameter gravado no pedido bruto.

    dropoff vazio => dropoff; lista de pickup => pickup (primeiro endereço e primeiro horário).
    O package_number só vai para pedidos divididos (mais de um pacote).
    """
    info_needed = info_needed_of(data)
    dropoff = info_needed.get("dropoff", [])
    pickup_needs = [str(x) for x in as_list(info_needed.get("pickup")) if x]

    packages = as_list(get_path(data, "order_detail.package_list"))
    package_number = get_str(packages[0], "package_number") if packages else None
    is_split_order = len(packages) > 1

    addresses = as_list(get_path(data, "shipping_parameter.response.pickup.address_list"))
    address_id = get_path(addresses[0], "address_id") if addresses else None
    slots = as_list(get_path(addresses[0], "time_slot_list")) if addresses else []
    pickup_time_id = get_path(slots[0], "pickup_time_id") if slots else None

    body: Dict[str, Any] = {"order_sn": str(order_sn)}
    if is_split_order and package_number:
        body["package_number"] = package_number

    mode = None
    if isinstance(dropoff, list) and not dropoff:
        mode = "dropoff"
        body["dropoff"] = {}
    elif pickup_needs:
        mode = "pickup"
        body["pickup"] = {}
        if "address_id" in pickup_needs and address_id:
            body["pickup"]["address_id"] = address_id
        if "pickup_time_id" in pickup_needs and pickup_time_id:
            body["pickup"]["pickup_time_id"] = pickup_time_id

    return {
        "mode": mode,
        "body": body,
        "info_needed": info_needed,
        "package_number": package_number,
        "is_split_order": is_split_order,
        "address_id": address_id,
        "pickup_time_id": pickup_time_id,
    }


def pick_tracking_number(payload: Any) -> Dict[str, Optional[str]]:
    """last mile, senão first mile, senão tracking_number"""
    response = as_dict(first_present(get_path(payload, "response"), get_path(payload, "data"), payload))
    first_mile = get_str(response, "first_mile_tracking_number")
    last_mile = get_str(response, "last_mile_tracking_number")
    return {
        "tracking_number": last_mile or first_mile or get_str(response, "tracking_number"),
        "plp_number": get_str(response, "plp_number"),
        "first_mile_tracking_number": first_mile,
        "last_mile_tracking_number": last_mile,
    }


def label_columns(payload: Any, file_type: str, fetched_at: str) -> Dict[str, Any]:
    """Colunas label_* a partir da resposta do create_shipping_document (vazio se não houver conteúdo)"""
    response = as_dict(first_present(get_path(payload, "response"), get_path(payload, "data"), payload))
    content = (response.get("content_base64") or response.get("base64") or response.get("file_base64")
               or response.get("pdf_base64") or response.get("zpl_base64"))
    pdf = response.get("pdf_base64") or response.get("pdf")
    zpl = response.get("zpl2_base64") or response.get("zpl_base64") or response.get("zpl")
    chosen = content or pdf or zpl
    if not chosen:
        return {}

    file_type = str(file_type).lower()
    content_type = response.get("content_type") or response.get("mime")
    if not content_type:
        if file_type == "pdf":
            content_type = "application/pdf"
        elif "zpl" in file_type:
            content_type = "text/plain"

    columns = {
        "label_cached": True,
        "label_response_type": file_type,
        "label_fetched_at": fetched_at,
        "label_size_bytes": (len(chosen) * 3) // 4,
        "label_content_base64": chosen,
        "label_content_type": content_type,
    }
    if file_type == "pdf":
        columns["label_pdf_base64"] = chosen
    if "zpl" in file_type:
        columns["label_zpl2_base64"] = chosen
    return columns


class ShopeeShipmentService:
    """Programa o envio dos pedidos Shopee selecionados"""

    def __init__(self, db: Session, correlation_id: Optional[str] = None):
        self.db = db
        self.trace = SyncTrace(correlation_id, logger)
        self.raw_orders = RawOrderService(db)
        self.token_manager = TokenManager(db)

    def arrange(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params = as_dict(params)
        correlation_id = self.trace.correlation_id
        organization_id = params.get("organizationId")
        if not organization_id:
            return {"ok": False, "error": "Missing organizationId", "correlationId": correlation_id, "status_code": 400}

        orders = self._resolve_orders(organization_id, params)
        if not orders:
            return {"ok": False, "error": "No orders to arrange", "correlationId": correlation_id, "status_code": 400}

        integration = self.db.query(MarketplaceIntegration).filter(
            MarketplaceIntegration.organizations_id == organization_id,
            MarketplaceIntegration.marketplace_name == Marketplace.SHOPEE,
        ).order_by(MarketplaceIntegration.expires_at.desc()).first()
        if not integration:
            return {"ok": False, "error": "Integration not found", "correlationId": correlation_id, "status_code": 404}

        client = ShopeeClient(self.db, integration, self.token_manager)
        planned = []
        for order in orders:
            try:
                planned.append(self._arrange_order(client, order))
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"❌ Erro ao gravar envio do pedido {order.marketplace_order_id}: {e}")
                planned.append({"order_sn": order.marketplace_order_id, "mode": None, "planned": False,
                                "reason": "update_error"})

        get_integration_logger().log_event("shopee_arrange_shipment", {"planned": planned}, organization_id=organization_id)
        return {"ok": True, "planned": planned, "correlationId": correlation_id}

    def _resolve_orders(self, organization_id: str, params: Dict[str, Any]) -> List[MarketplaceOrderPresented]:
        presented_ids = [str(i) for i in as_list(params.get("presentedIds")) if i]
        order_sns = [str(o) for o in as_list(params.get("orders")) if o]
        single = params.get("orderSn") or params.get("order_sn")
        if single:
            order_sns.append(str(single))

        found: Dict[str, MarketplaceOrderPresented] = {}
        base = self.db.query(MarketplaceOrderPresented).filter(
            MarketplaceOrderPresented.organizations_id == organization_id,
            MarketplaceOrderPresented.marketplace == Marketplace.SHOPEE,
        )
        if presented_ids:
            for row in base.filter(MarketplaceOrderPresented.id.in_(presented_ids)).all():
                found[row.id] = row
        if order_sns:
            for row in base.filter(MarketplaceOrderPresented.marketplace_order_id.in_(order_sns)).all():
                found[row.id] = row
        return list(found.values())

    # === POR PEDIDO ===

    def _arrange_order(self, client: ShopeeClient, order: MarketplaceOrderPresented) -> Dict[str, Any]:
        order_sn = order.marketplace_order_id
        now = iso_now()
        raw = self.raw_orders.find(order.organizations_id, Marketplace.SHOPEE, order_sn)
        data = dict(as_dict(raw.data)) if raw else {}

        if not info_needed_of(data) and raw is not None:
            shipping_parameter = self._fetch_shipping_parameter(client, order_sn)
            if shipping_parameter:
                data["shipping_parameter"] = shipping_parameter
                raw.data = data
                flag_modified(raw, "data")
                self.db.commit()

        plan = plan_shipment(order_sn, data)
        mode = plan["mode"]
        self.trace.add("plan", order_sn=order_sn, mode=mode)
        if not mode:
            return {"order_sn": order_sn, "mode": None, "planned": False, "reason": "missing_mode"}

        shipping_info: Dict[str, Any] = {
            "order_sn": order_sn,
            "mode": mode,
            "info_needed": plan["info_needed"],
            "planned_payload": plan["body"],
            "planned_at": now,
            "log_events": [{
                "stage": "plan",
                "time": now,
                "correlation_id": self.trace.correlation_id,
                "order_sn": order_sn,
                "mode": mode,
                "package_number": plan["package_number"],
                "address_id": plan["address_id"],
                "pickup_time_id": plan["pickup_time_id"],
                "is_split_order": plan["is_split_order"],
            }],
        }
        if plan["package_number"]:
            shipping_info["package_number"] = plan["package_number"]
        if mode in plan["body"]:
            shipping_info[mode] = plan["body"][mode]
        order.shipping_info = shipping_info
        order.ship_order_planned_at = utcnow()
        self.db.commit()

        ship_ok = self._ship_order(client, order, plan, shipping_info, now)
        package_number = plan["package_number"] if plan["is_split_order"] else None
        tracking_number = self._tracking(client, order, package_number, shipping_info, now)
        if tracking_number:
            self._label(client, order, package_number, tracking_number, shipping_info, now)

        order.shipping_info = shipping_info
        flag_modified(order, "shipping_info")
        self.db.commit()

        if not ship_ok:
            reason = "ship_order:error"
        elif tracking_number:
            reason = f"ship_order:ok;tracking:{tracking_number}"
        else:
            reason = "ship_order:ok"
        logger.info(f"🔄 Envio Shopee {order_sn} ({mode}): {reason}")
        return {"order_sn": order_sn, "mode": mode, "planned": True, "reason": reason}

    def _fetch_shipping_parameter(self, client: ShopeeClient, order_sn: str) -> Optional[Dict[str, Any]]:
        try:
            return client.get(SHIPPING_PARAMETER_PATH, params={"order_sn": order_sn})
        except (MarketplaceAPIError, TokenRefreshError) as e:
            logger.warning(f"⚠️ shipping_parameter indisponível para {order_sn}: {e}")
            return None

    def _ship_order(self, client: ShopeeClient, order: MarketplaceOrderPresented, plan: Dict[str, Any],
                    shipping_info: Dict[str, Any], now: str) -> bool:
        body = dict(plan["body"])
        response: Any = None
        error_code = error_message = None
        ok = False
        for _ in range(2):
            try:
                response = client.post(SHIP_ORDER_PATH, body)
                ok = True
                error_code = error_message = None
                break
            except MarketplaceAPIError as e:
                response = e.payload
                error_code = e.error_code
                error_message = get_str(e.payload, "message") or e.message
                if error_code == PACKAGE_NUMBER_NOT_NEEDED and "package_number" in body:
                    logger.warning(f"⚠️ Shopee dispensou package_number em {order.marketplace_order_id}, repetindo")
                    body.pop("package_number")
                    continue
                break
            except TokenRefreshError as e:
                error_code, error_message = "token_refresh_failed", str(e)
                break

        shipping_info.update({
            "ship_order_request": body,
            "ship_order_response": response,
            "ship_order_success": ok,
            "ship_order_channel": plan["mode"],
            "ship_order_error_code": error_code,
            "ship_order_error_message": error_message,
        })
        shipping_info["log_events"].append({
            "stage": "ship_order",
            "time": now,
            "correlation_id": self.trace.correlation_id,
            "success": ok,
            "error_code": error_code,
            "error_message": error_message,
            "mode": plan["mode"],
            "package_number": body.get("package_number"),
            "is_split_order": plan["is_split_order"],
        })
        self.trace.add("ship_order", order_sn=order.marketplace_order_id, success=ok, error_code=error_code)
        return ok

    def _tracking(self, client: ShopeeClient, order: MarketplaceOrderPresented, package_number: Optional[str],
                  shipping_info: Dict[str, Any], now: str) -> Optional[str]:
        order_sn = order.marketplace_order_id
        params = {
            "order_sn": order_sn,
            "response_optional_fields": "plp_number,first_mile_tracking_number,last_mile_tracking_number",
        }
        if package_number:
            params["package_number"] = package_number
        try:
            response = client.get(TRACKING_NUMBER_PATH, params=params)
        except (MarketplaceAPIError, TokenRefreshError) as e:
            logger.warning(f"⚠️ Rastreio indisponível para {order_sn}: {e}")
            response = None

        numbers = pick_tracking_number(response) if response else pick_tracking_number({})
        tracking_number = numbers.pop("tracking_number")
        shipping_info["tracking_query"] = {"order_sn": order_sn, "package_number": package_number, "requested_at": now}
        shipping_info["tracking_numbers"] = numbers
        shipping_info["tracking_response"] = response
        shipping_info["log_events"].append({
            "stage": "tracking",
            "time": now,
            "correlation_id": self.trace.correlation_id,
            "tracking_number": tracking_number,
            "package_number": package_number,
            **numbers,
        })
        if tracking_number:
            order.tracking_number = tracking_number
        return tracking_number

    def _label(self, client: ShopeeClient, order: MarketplaceOrderPresented, package_number: Optional[str],
               tracking_number: str, shipping_info: Dict[str, Any], now: str) -> bool:
        order_sn = order.marketplace_order_id
        params = {"order_sn": order_sn}
        if package_number:
            params["package_number"] = package_number
        try:
            document_params = as_dict(client.get(DOCUMENT_PARAMETER_PATH, params=params))
        except (MarketplaceAPIError, TokenRefreshError) as e:
            logger.warning(f"⚠️ Parâmetros de documento indisponíveis para {order_sn}: {e}")
            document_params = {}

        fields = as_dict(first_present(document_params.get("response"), document_params.get("data"), document_params))
        document_type = str(fields.get("document_type") or fields.get("type") or fields.get("default_document_type") or "label")
        file_type = str(fields.get("file_type") or fields.get("format") or fields.get("default_file_type") or "pdf")

        body = {"order_sn": order_sn, "tracking_number": tracking_number,
                "document_type": document_type, "file_type": file_type}
        if package_number:
            body["package_number"] = package_number

        response: Any = None
        ok = False
        try:
            response = client.post(CREATE_DOCUMENT_PATH, body)
            ok = True
        except MarketplaceAPIError as e:
            response = e.payload
            logger.warning(f"⚠️ Falha ao gerar etiqueta Shopee {order_sn}: {e}")
        except TokenRefreshError as e:
            logger.warning(f"⚠️ Falha ao gerar etiqueta Shopee {order_sn}: {e}")

        shipping_info["label_request"] = {**body, "requested_at": now}
        shipping_info["label_response"] = response
        shipping_info["label_success"] = ok
        shipping_info["log_events"].append({
            "stage": "label",
            "time": now,
            "correlation_id": self.trace.correlation_id,
            "success": ok,
            "tracking_number": tracking_number,
            "package_number": package_number,
        })
        for key, value in label_columns(response, file_type, now).items():
            setattr(order, key, value)
        return ok
