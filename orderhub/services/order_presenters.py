"""
Normalização de pedidos brutos (Mercado Livre e Shopee) em pedidos apresentados

Funções puras: recebem o pedido bruto e os vínculos já resolvidos e devolvem
os campos do pedido apresentado, as linhas de itens e o status_interno.
"""
import re
from typing import Any, Dict, List, Optional, Tuple

from orderhub.models.marketplace_models import StatusInterno
from orderhub.utils.br_address import br_uf_from_state, parse_br_address
from orderhub.utils.payload import (
    as_dict, as_list, digits_only, epoch_to_datetime, first_of, get_num, get_path, get_str,
    ml_permalink, sanitize_url, to_int_if_digits,
)

ML_SHIPPED_STATUSES = {
    "shipped", "dropped_off", "in_transit", "handed_to_carrier", "on_route",
    "out_for_delivery", "delivery_in_progress", "collected", "delivered",
}
SHOPEE_LOGISTICS_READY = {"logistics_ready", "logistics_request_created"}
SHOPEE_SHIPPED_STATUSES = {"shipped", "to_confirm_receive", "completed"}


def _int_or_none(value: Any) -> Optional[int]:
    converted = to_int_if_digits(value)
    if isinstance(converted, int) and not isinstance(converted, bool):
        return converted
    return None


def external_key(item_id: Optional[str], variation_id: Optional[str]) -> Optional[str]:
    """Chave externa da linha de item: variação quando existir, senão o anúncio"""
    return (variation_id or "").strip() or (item_id or "").strip() or None


# === MERCADO LIVRE ===

def ml_item_fields(oi: Dict[str, Any]) -> Dict[str, Any]:
    """Campos normalizados de um order_item do ML"""
    variation_id = (get_str(oi, "item.variation_id") or get_str(oi, "variation_id") or "").strip()
    item_id = get_str(oi, "item.id") or get_str(oi, "item_id") or get_str(oi, "id") or ""
    color = None
    for attr in as_list(get_path(oi, "item.variation_attributes")):
        if (get_str(attr, "name") or "").lower() == "cor" and get_str(attr, "value_name"):
            color = get_str(attr, "value_name")
            break
    unit = first_of(get_num(oi, "unit_price"), get_num(oi, "price"), 0)
    return {
        "item_id": item_id,
        "variation_id": variation_id,
        "seller_sku": (get_str(oi, "item.seller_sku") or get_str(oi, "seller_sku") or "").strip(),
        "title": (get_str(oi, "item.title") or get_str(oi, "title") or "").strip() or None,
        "quantity": first_of(get_num(oi, "quantity"), get_num(oi, "requested_quantity.value"), 1),
        "unit_price": unit,
        "full_unit_price": first_of(get_num(oi, "full_unit_price"), get_num(oi, "unit_price"), 0),
        "sale_fee": first_of(get_num(oi, "sale_fee"), 0),
        "color": color,
        "external_id": external_key(item_id, variation_id),
        "image_url": sanitize_url(first_of(
            get_str(oi, "item.pictures.0.secure_url"),
            get_str(oi, "item.pictures.0.url"),
            get_str(oi, "item.picture_url"),
            get_str(oi, "item.thumbnail"),
            get_str(oi, "thumbnail"),
        )),
    }


def ml_link_keys(raw) -> List[Dict[str, Any]]:
    return [ml_item_fields(oi) for oi in as_list(raw.order_items)]


def _ml_receiver(raw) -> Optional[Dict[str, Any]]:
    receiver = get_path(raw.billing_info, "receiver")
    if isinstance(receiver, dict):
        return receiver
    for entry in as_list(get_path(raw.billing_info, "shipments")):
        for key in ("receiver", "receiver_tax"):
            candidate = get_path(entry, key)
            if isinstance(candidate, dict):
                return candidate
    return None


def _doc_type_from_number(number: Optional[str]) -> Optional[str]:
    digits = digits_only(number)
    if len(digits) == 11:
        return "CPF"
    if len(digits) == 14:
        return "CNPJ"
    return None


def _ml_uf(state_id: Optional[str], state_name: Optional[str]) -> Optional[str]:
    if state_id:
        uf = state_id.split("-")[-1].strip().upper()
        if len(uf) == 2:
            return uf
    return br_uf_from_state(state_name)


def present_mercado_livre(raw, links: List[Dict[str, Any]], has_unlinked: bool) -> Dict[str, Any]:
    """Campos do pedido apresentado a partir do pedido bruto do ML"""
    data = as_dict(raw.data)
    items = as_list(raw.order_items)
    shipment = as_dict(as_list(raw.shipments)[0]) if as_list(raw.shipments) else {}

    total_qty = 0.0
    total_amount = 0.0
    total_full = 0.0
    total_fee = 0.0
    has_variations = has_bundle = has_kit = False
    category_ids: List[str] = []
    listing_type_ids: List[str] = []
    stock_node_ids: List[str] = []
    colors: List[str] = []

    for oi in items:
        fields = ml_item_fields(oi)
        total_qty += fields["quantity"]
        total_amount += fields["unit_price"] * fields["quantity"]
        total_full += fields["full_unit_price"] * fields["quantity"]
        total_fee += fields["sale_fee"]
        for target, value in (
            (category_ids, get_str(oi, "item.category_id") or get_str(oi, "category_id")),
            (listing_type_ids, get_str(oi, "listing_type_id")),
            (stock_node_ids, get_str(oi, "stock.node_id")),
        ):
            if value and value not in target:
                target.append(value)
        if fields["variation_id"]:
            has_variations = True
        if get_path(oi, "bundle"):
            has_bundle = True
        if get_str(oi, "kit_instance_id"):
            has_kit = True
        for attr in as_list(get_path(oi, "item.variation_attributes")):
            name = (get_str(attr, "name") or "").lower()
            value = get_str(attr, "value_name")
            if name == "cor" and value and value not in colors:
                colors.append(value)

    first = items[0] if items else None
    first_fields = ml_item_fields(first) if first else {}
    first_permalink = None
    if first:
        first_permalink = ml_permalink(first_fields.get("item_id"), first_fields.get("title")) or (
            get_str(first, "item.permalink") or get_str(first, "permalink"))

    buyer = as_dict(raw.buyer)
    first_name = get_str(buyer, "first_name")
    last_name = get_str(buyer, "last_name")
    customer_name = get_str(buyer, "nickname") or (f"{first_name or ''} {last_name or ''}".strip() or None)

    def address_field(field: str) -> Optional[str]:
        return first_of(
            get_str(shipment, f"destination.shipping_address.{field}"),
            get_str(shipment, f"receiver_address.{field}"),
            get_str(data, f"shipping.receiver_address.{field}"),
            get_str(data, f"shipping.shipping_address.{field}"),
        )

    neighborhood = first_of(
        address_field("neighborhood.name"),
        get_str(shipment, "destination.shipping_address.neighborhood.id"),
        get_str(shipment, "receiver_address.neighborhood.id"),
    )
    state_name = get_str(data, "shipping.receiver_address.state.name")
    state_id = get_str(data, "shipping.receiver_address.state.id")

    shipment_status = (get_str(shipment, "status") or "").lower() or (get_str(data, "shipping.status") or "").lower()
    shipment_substatus = (get_str(shipment, "substatus") or "").lower() or (get_str(data, "shipping.substatus") or "").lower()
    delays = shipment.get("delays") if isinstance(shipment.get("delays"), list) else []

    # Pagamentos: o último valor encontrado prevalece
    payment_status = None
    paid_amount = marketplace_fee = shipping_cost = None
    payment_created = payment_approved = None
    is_cancelled = (raw.status or "").lower() == "cancelled"
    is_refunded = False
    for payment in as_list(raw.payments):
        status = (get_str(payment, "status") or "").lower()
        if status:
            payment_status = status
        paid = first_of(get_num(payment, "total_paid_amount"), get_num(payment, "transaction_amount"))
        if paid is not None:
            paid_amount = paid
        fee = get_num(payment, "marketplace_fee")
        if fee is not None:
            marketplace_fee = fee
        cost = get_num(payment, "shipping_cost")
        if cost is not None:
            shipping_cost = cost
        payment_created = get_str(payment, "date_created") or payment_created
        payment_approved = first_of(get_str(payment, "date_approved"), get_str(payment, "date_last_modified")) or payment_approved
        if status == "cancelled":
            is_cancelled = True
        if status == "refunded":
            is_refunded = True

    pack_raw = get_str(data, "pack_id.id") or get_str(data, "pack_id")
    pack_id = pack_raw if pack_raw and pack_raw.isdigit() else raw.marketplace_order_id

    receiver = _ml_receiver(raw)
    doc_number = first_of(
        get_str(receiver, "document.value"),
        get_str(receiver, "doc_number"),
        get_str(receiver, "document_number"),
        get_str(receiver, "tax_id"),
        get_str(receiver, "number"),
    )
    doc_type_raw = first_of(
        get_str(receiver, "document.id"),
        get_str(receiver, "doc_type"),
        get_str(receiver, "document_type"),
        get_str(receiver, "type"),
        get_str(buyer, "billing_info.doc_type"),
        get_str(data, "buyer.billing_info.doc_type"),
    )
    billing_address = get_path(receiver, "address")

    row = {
        "status": raw.status,
        "status_detail": str(raw.status_detail or ""),
        "order_total": get_num(data, "total_amount"),
        "has_multiple_products": len(items) > 1,
        "has_unlinked_items": has_unlinked,
        "first_item_id": first_fields.get("item_id") or None,
        "first_item_title": first_fields.get("title"),
        "first_item_sku": first_fields.get("seller_sku") or None,
        "first_item_variation_id": _int_or_none(first_fields.get("variation_id")),
        "first_item_permalink": first_permalink,
        "items_total_quantity": int(total_qty),
        "items_total_amount": total_amount,
        "items_total_full_amount": total_full,
        "items_total_sale_fee": total_fee,
        "items_currency_id": get_str(first, "currency_id") if first else None,
        "category_ids": category_ids,
        "listing_type_ids": listing_type_ids,
        "stock_node_ids": stock_node_ids,
        "has_variations": has_variations,
        "has_bundle": has_bundle,
        "has_kit": has_kit,
        "variation_color_names": colors,
        "pack_id": pack_id,
        "linked_products": links,
        "id_buyer": _int_or_none(get_str(buyer, "id")),
        "first_name_buyer": first_name,
        "last_name_buyer": last_name,
        "customer_name": customer_name,
        "shipping_city_name": get_str(data, "shipping.receiver_address.city.name") or get_str(data, "shipping.receiver_address.city"),
        "shipping_state_name": state_name,
        "shipping_state_uf": _ml_uf(state_id, state_name),
        "shipping_address_line": address_field("address_line"),
        "shipping_street_name": address_field("street_name"),
        "shipping_street_number": address_field("street_number"),
        "shipping_neighborhood": neighborhood,
        "shipping_zip_code": address_field("zip_code"),
        "shipping_comment": address_field("comment"),
        "shipment_status": shipment_status or None,
        "shipment_substatus": shipment_substatus or None,
        "shipping_type": get_str(data, "shipping.logistic_type") or get_str(shipment, "logistic.type"),
        "shipping_method_name": get_str(shipment, "shipping_option.name"),
        "estimated_delivery_limit_at": get_str(shipment, "shipping_option.estimated_delivery_limit.date"),
        "shipment_sla_status": get_str(shipment, "sla.status") or get_str(shipment, "sla_status"),
        "shipment_sla_service": get_str(shipment, "sla.service") or get_str(shipment, "sla_service"),
        "shipment_sla_expected_date": get_str(shipment, "sla.expected_date") or get_str(shipment, "sla_expected_date"),
        "shipment_sla_last_updated": get_str(shipment, "sla.last_updated") or get_str(shipment, "sla_last_updated"),
        "shipment_delays": delays,
        "printed_label": shipment_substatus == "printed",
        "payment_status": payment_status,
        "payment_total_paid_amount": paid_amount,
        "payment_marketplace_fee": marketplace_fee,
        "payment_shipping_cost": shipping_cost,
        "payment_date_created": payment_created,
        "payment_date_approved": payment_approved,
        "payment_refunded_amount": get_num(data, "refunds.0.amount"),
        "is_cancelled": is_cancelled,
        "is_refunded": is_refunded,
        "billing_doc_number": doc_number,
        "billing_doc_type": doc_type_raw.upper() if doc_type_raw else _doc_type_from_number(doc_number),
        "billing_name": first_of(get_str(receiver, "name"), get_str(receiver, "full_name"), customer_name),
        "billing_email": get_str(receiver, "email"),
        "billing_phone": get_str(receiver, "phone.number") or get_str(receiver, "phone"),
        "billing_state_registration": get_str(receiver, "state_registration"),
        "billing_taxpayer_type": get_str(receiver, "taxpayer_type.description") or get_str(receiver, "taxpayer_type"),
        "billing_cust_type": get_str(receiver, "cust_type"),
        "billing_is_normalized": get_path(receiver, "is_normalized") if isinstance(get_path(receiver, "is_normalized"), bool) else None,
        "billing_address": billing_address if isinstance(billing_address, dict) else None,
        "created_at": raw.date_created,
        "last_updated": raw.last_updated,
        "last_synced_at": raw.last_synced_at,
    }
    row.update(ml_label_fields(raw.labels))
    row["status_interno"] = ml_status_interno(row, has_unlinked)
    return row


def ml_label_fields(labels: Any) -> Dict[str, Any]:
    """Colunas label_* a partir da etiqueta em cache no pedido bruto"""
    labels = as_dict(labels)
    cached = bool(labels.get("cached")) and not labels.get("error")
    return {
        "label_cached": cached,
        "label_response_type": labels.get("response_type") if cached else None,
        "label_fetched_at": labels.get("fetched_at") if cached else None,
        "label_size_bytes": labels.get("size_bytes") if cached else None,
        "label_content_base64": labels.get("content_base64") if cached else None,
        "label_content_type": labels.get("content_type") if cached else None,
        "label_pdf_base64": labels.get("pdf_base64") if cached else None,
        "label_zpl2_base64": labels.get("zpl2_base64") if cached else None,
    }


def ml_status_interno(row: Dict[str, Any], has_unlinked: bool) -> str:
    """status_interno do ML; a primeira regra que casar vence"""
    ship = (row.get("shipment_status") or "").lower()
    sub = (row.get("shipment_substatus") or "").lower()
    order_status = (row.get("status") or "").lower()

    if row.get("is_cancelled") or row.get("is_refunded"):
        return StatusInterno.CANCELADO
    if ship == "not_delivered" and sub == "returned_to_warehouse":
        return StatusInterno.DEVOLUCAO
    if (row.get("shipping_type") or "").lower() == "fulfillment":
        return StatusInterno.ENVIADO
    if ship == "ready_to_ship" and sub == "invoice_pending":
        return StatusInterno.EMISSAO_NF
    if ship == "ready_to_ship" and sub == "ready_to_print":
        return StatusInterno.IMPRESSAO
    if ship == "ready_to_ship" and row.get("printed_label"):
        return StatusInterno.AGUARDANDO_COLETA
    if ship == "ready_to_ship" and sub == "dropped_off" and "paid" in (order_status, row.get("payment_status")):
        return StatusInterno.ENVIADO
    if ship in ML_SHIPPED_STATUSES:
        return StatusInterno.ENVIADO
    if has_unlinked:
        return StatusInterno.A_VINCULAR
    return StatusInterno.PENDENTE


def ml_item_rows(raw, pack_id: Optional[str]) -> List[Dict[str, Any]]:
    rows = []
    for oi in as_list(raw.order_items):
        fields = ml_item_fields(oi)
        rows.append({
            "id": raw.id,
            "pack_id": pack_id,
            "model_sku_externo": fields["seller_sku"] or None,
            "model_id_externo": fields["external_id"],
            "variation_name": fields["color"],
            "item_name": fields["title"],
            "quantity": int(fields["quantity"] or 1),
            "unit_price": float(fields["unit_price"] or 0),
            "image_url": fields["image_url"],
        })
    return rows


# === SHOPEE ===

def shopee_order_status(data: Dict[str, Any]) -> str:
    return (first_of(
        get_str(data, "order_detail.order_status"),
        get_str(data, "order_list_item.order_status"),
        get_str(data, "notification.order_status"),
        get_str(data, "notification.status"),
    ) or "").lower()


def shopee_item_fields(oi: Dict[str, Any]) -> Dict[str, Any]:
    item_id = get_str(oi, "item_id") or ""
    model_id = (get_str(oi, "model_id") or "").strip()
    return {
        "item_id": item_id,
        "variation_id": model_id,
        "seller_sku": (get_str(oi, "model_sku") or get_str(oi, "sku") or "").strip(),
        "title": (get_str(oi, "item_name") or "").strip() or None,
        "quantity": first_of(get_num(oi, "model_quantity_purchased"), get_num(oi, "quantity"), 1),
        "unit_price": first_of(get_num(oi, "item_price"), get_num(oi, "original_price"), 0),
        "full_unit_price": first_of(get_num(oi, "original_price"), get_num(oi, "item_price"), 0),
        "external_id": external_key(item_id, model_id),
    }


def shopee_link_keys(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [shopee_item_fields(oi) for oi in as_list(get_path(data, "order_detail.item_list"))]


def _shopee_invoice_address(data: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    root = get_path(data, "buyer_invoice_info")
    if not isinstance(root, dict):
        return None, None
    inv_root = first_of(root.get("response"), root.get("data")) or root
    inv_root = inv_root if isinstance(inv_root, dict) else root
    address = first_of(inv_root.get("invoice_address"), inv_root.get("address"), inv_root.get("shipping_address")) or inv_root
    return inv_root, address if isinstance(address, dict) else inv_root


def present_shopee(raw, links: List[Dict[str, Any]], has_unlinked: bool) -> Dict[str, Any]:
    """Campos do pedido apresentado a partir do combinado {order_list_item, order_detail, escrow_detail}"""
    data = as_dict(raw.data)
    order_status = shopee_order_status(data)

    pack_id = (first_of(
        get_str(data, "order_detail.order_sn"),
        get_str(data, "order_list_item.order_sn"),
        get_str(data, "notification.order_sn"),
        raw.marketplace_order_id,
    ) or "").strip() or None

    order_total = first_of(
        get_num(data, "order_detail.order_selling_price"),
        get_num(data, "escrow_detail.response.order_income.order_selling_price"),
        get_num(data, "order_list_item.order_selling_price"),
        get_num(data, "notification.order_selling_price"),
        get_num(data, "order_detail.total_amount"),
    )

    customer_name = first_of(
        get_str(data, "order_detail.buyer_username"),
        get_str(data, "order_list_item.buyer_username"),
        get_str(data, "notification.buyer_username"),
    )
    buyer_id = first_of(get_str(data, "order_detail.buyer_user_id"), get_str(data, "order_list_item.buyer_user_id"))
    buyer_cpf = get_str(data, "order_detail.buyer_cpf_id")

    def recipient(field: str) -> Optional[str]:
        return first_of(
            get_str(data, f"order_detail.recipient_address.{field}"),
            get_str(data, f"order_list_item.recipient_address.{field}"),
        )

    inv_root, inv_addr = _shopee_invoice_address(data)
    inv_street = first_of(get_str(inv_addr, "street_name"), get_str(inv_addr, "street"))
    inv_number = first_of(get_str(inv_addr, "street_number"), get_str(inv_addr, "number"))
    inv_neighborhood = first_of(
        get_str(inv_addr, "neighborhood.name"),
        get_str(inv_addr, "neighborhood_name"),
        get_str(inv_addr, "neighborhood"),
        get_str(inv_addr, "district"),
    )
    inv_zip = first_of(get_str(inv_addr, "zip_code"), get_str(inv_addr, "zipcode"), get_str(inv_addr, "postal_code"))
    inv_line = first_of(get_str(inv_addr, "address_line"), get_str(inv_addr, "address1"), get_str(inv_addr, "address"))
    inv_comment = first_of(get_str(inv_addr, "comment"), get_str(inv_root, "comment"))

    package_address = as_dict(get_path(data, "package_detail_list.0.recipient_address"))
    pkg_full = get_str(package_address, "full_address")
    pkg_state = get_str(package_address, "state")

    address_line = first_of(pkg_full, inv_line, recipient("full_address"))
    parsed = parse_br_address(address_line)
    state_name = first_of(pkg_state, recipient("region"))

    logistics_status = (first_of(
        get_str(data, "order_detail.package_list.0.logistics_status"),
        get_str(data, "order_detail.package_list.logistics_status"),
        get_str(data, "order_list_item.package_list.0.logistics_status"),
        get_str(data, "order_list_item.package_list.logistics_status"),
    ))

    created_at = epoch_to_datetime(first_of(
        get_str(data, "order_detail.create_time"), get_str(data, "order_list_item.create_time"))) or raw.date_created
    last_updated = epoch_to_datetime(first_of(
        get_str(data, "order_detail.update_time"), get_str(data, "order_list_item.update_time"))) or raw.last_updated

    items = as_list(get_path(data, "order_detail.item_list"))
    total_qty = 0.0
    total_amount = 0.0
    total_full = 0.0
    has_variations = False
    variation_names: List[str] = []
    for oi in items:
        fields = shopee_item_fields(oi)
        total_qty += fields["quantity"]
        total_amount += fields["unit_price"] * fields["quantity"]
        total_full += fields["full_unit_price"] * fields["quantity"]
        if fields["variation_id"]:
            has_variations = True
        model_name = (get_str(oi, "model_name") or "").strip()
        if model_name and model_name not in variation_names:
            variation_names.append(model_name)

    first_fields = shopee_item_fields(items[0]) if items else {}
    carrier = first_of(
        get_str(data, "order_detail.shipping_carrier"),
        get_str(data, "order_list_item.shipping_carrier"),
        get_str(data, "notification.shipping_carrier"),
    )
    shipping_parameter = get_path(data, "shipping_parameter")
    shipping_info = first_of(get_path(data, "shipping_parameter.response"), shipping_parameter)

    row = {
        "status": raw.status or order_status,
        "status_detail": str(raw.status_detail or ""),
        "order_total": order_total,
        "has_multiple_products": len(items) > 1,
        "has_unlinked_items": has_unlinked,
        "first_item_id": first_fields.get("item_id") or None,
        "first_item_title": first_fields.get("title"),
        "first_item_sku": first_fields.get("seller_sku") or None,
        "first_item_variation_id": _int_or_none(first_fields.get("variation_id")),
        "first_item_permalink": None,
        "items_total_quantity": int(total_qty),
        "items_total_amount": total_amount,
        "items_total_full_amount": total_full,
        "items_total_sale_fee": (get_num(data, "escrow_detail.response.order_income.commission_fee") or 0)
        + (get_num(data, "escrow_detail.response.order_income.service_fee") or 0),
        "items_currency_id": first_of(
            get_str(data, "order_detail.currency"),
            get_str(data, "escrow_detail.currency"),
            get_str(data, "order_list_item.currency"),
        ),
        "category_ids": [],
        "listing_type_ids": [],
        "stock_node_ids": [],
        "has_variations": has_variations,
        "has_bundle": False,
        "has_kit": False,
        "variation_color_names": variation_names,
        "pack_id": pack_id,
        "linked_products": links,
        "id_buyer": _int_or_none(buyer_id),
        "first_name_buyer": None,
        "last_name_buyer": None,
        "customer_name": customer_name,
        "shipping_city_name": first_of(get_str(package_address, "city"), recipient("city")),
        "shipping_state_name": state_name,
        "shipping_state_uf": br_uf_from_state(state_name),
        "shipping_address_line": address_line,
        "shipping_street_name": first_of(inv_street, parsed["street_name"]),
        "shipping_street_number": first_of(inv_number, parsed["street_number"]),
        "shipping_neighborhood": first_of(
            get_str(package_address, "district"),
            get_str(package_address, "town"),
            inv_neighborhood,
            parsed["neighborhood_name"],
        ),
        "shipping_zip_code": first_of(get_str(package_address, "zipcode"), inv_zip, recipient("zipcode")),
        "shipping_comment": inv_comment,
        "shipment_status": logistics_status,
        "shipment_substatus": None,
        "shipping_type": carrier,
        "shipping_method_name": first_of(
            get_str(data, "order_detail.shipping_carrier"), get_str(data, "order_list_item.shipping_carrier")),
        "estimated_delivery_limit_at": None,
        "shipment_sla_status": None,
        "shipment_sla_service": None,
        "shipment_sla_expected_date": None,
        "shipment_sla_last_updated": last_updated.isoformat() if last_updated else None,
        "shipment_delays": [],
        "printed_label": False,
        "payment_status": None,
        "payment_total_paid_amount": order_total,
        "payment_marketplace_fee": None,
        "payment_shipping_cost": None,
        "payment_date_created": None,
        "payment_date_approved": None,
        "payment_refunded_amount": None,
        "is_cancelled": order_status in ("cancelled", "in_cancel"),
        "is_refunded": False,
        "billing_doc_number": buyer_cpf,
        "billing_doc_type": "cpf" if buyer_cpf else None,
        "billing_name": first_of(get_str(package_address, "name"), customer_name),
        "billing_phone": get_str(package_address, "phone"),
        "tracking_number": first_of(
            get_str(data, "order_detail.tracking_number"),
            get_str(data, "order_detail.package_list.0.tracking_number"),
            get_str(data, "notification.tracking_number"),
            get_str(data, "notification.tracking_no"),
        ),
        "shipping_info": shipping_info if isinstance(shipping_info, dict) else None,
        "created_at": created_at,
        "last_updated": last_updated,
        "last_synced_at": raw.last_synced_at,
    }
    row["status_interno"] = shopee_status_interno(data, has_unlinked)
    return row


def shopee_status_interno(data: Dict[str, Any], has_unlinked: bool) -> str:
    """status_interno da Shopee; a primeira regra que casar vence"""
    status = shopee_order_status(data)
    logistics = (first_of(
        get_str(data, "order_detail.logistics_status"),
        get_str(data, "order_list_item.logistics_status"),
    ) or "").lower()
    invoice_status = (get_str(data, "order_detail.invoice_data.invoice_status") or "").lower()
    has_invoice_number = bool(get_str(data, "order_detail.invoice_data.invoice_number"))

    if status in ("cancelled", "in_cancel"):
        return StatusInterno.CANCELADO
    if status == "to_return":
        return StatusInterno.DEVOLUCAO
    if (status == "ready_to_ship" or logistics in SHOPEE_LOGISTICS_READY) and has_unlinked:
        return StatusInterno.A_VINCULAR
    if status == "ready_to_ship" and (invoice_status in ("pending", "invoice_pending") or not has_invoice_number):
        return StatusInterno.EMISSAO_NF
    if status in ("ready_to_ship", "processed") or logistics in SHOPEE_LOGISTICS_READY:
        return StatusInterno.IMPRESSAO
    if status == "retry_ship":
        return StatusInterno.AGUARDANDO_COLETA
    if status in SHOPEE_SHIPPED_STATUSES or get_str(data, "order_detail.pickup_done_time"):
        return StatusInterno.ENVIADO
    return StatusInterno.PENDENTE


def is_submit_locked(current_status: Optional[str], submission_status: Optional[str]) -> bool:
    """Status "Subir XML" fica travado enquanto a NF está pendente/enviada ao marketplace"""
    return bool(re.search(r"subir\s+xml", current_status or "", re.IGNORECASE)) and \
        (submission_status or "").lower() in ("pending", "sent")


def shopee_items_source(data: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """Primeira lista de itens não vazia, com o nome da origem"""
    for path in (
        "order_detail.item_list",
        "order_list_item.item_list",
        "notification.item_list",
        "escrow_detail.response.order_income.items",
    ):
        candidate = get_path(data, path)
        if isinstance(candidate, list) and candidate:
            return candidate, path
    return [], None


def shopee_item_rows(raw, items: List[Dict[str, Any]], pack_id: Optional[str]) -> List[Dict[str, Any]]:
    rows = []
    for oi in items:
        rows.append({
            "id": raw.id,
            "pack_id": pack_id,
            "model_sku_externo": (get_str(oi, "model_sku") or "").strip() or None,
            "model_id_externo": (first_of(get_str(oi, "model_id"), get_str(oi, "item_id"), get_str(oi, "order_item_id")) or "").strip() or None,
            "variation_name": (get_str(oi, "model_name") or "").strip() or None,
            "item_name": (get_str(oi, "item_name") or "").strip() or None,
            "quantity": int(first_of(get_num(oi, "model_quantity_purchased"), get_num(oi, "quantity"), 1) or 1),
            "unit_price": float(first_of(
                get_num(oi, "model_discounted_price"),
                get_num(oi, "discounted_price"),
                get_num(oi, "item_price"),
                get_num(oi, "selling_price"),
                0,
            )),
            "image_url": sanitize_url(get_str(oi, "image_info.image_url")),
        })
    return rows
