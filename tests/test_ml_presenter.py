from types import SimpleNamespace

import pytest

from orderhub.models.marketplace_models import StatusInterno
from orderhub.services import order_presenters


def _raw(payloads, order=None, shipment=None, **fields):
    order = order or payloads.ml_order()
    values = dict(
        id="raw-1",
        marketplace_order_id=str(order["id"]),
        status=order["status"],
        status_detail=None,
        data=order,
        order_items=order["order_items"],
        buyer=order["buyer"],
        payments=order["payments"],
        shipments=[shipment or payloads.ml_shipment(status="ready_to_ship", substatus="ready_to_print")],
        billing_info={"receiver": {"document": {"id": "cpf", "value": "123.456.789-01"}, "name": "Ana Silva"}},
        labels=None,
        date_created=None,
        last_updated=None,
        last_synced_at=None,
    )
    values.update(fields)
    return SimpleNamespace(**values)


def test_present_mercado_livre_aggregates_items(payloads):
    row = order_presenters.present_mercado_livre(_raw(payloads), [], False)

    assert row["items_total_quantity"] == 2
    assert row["items_total_amount"] == 100.0
    assert row["items_total_full_amount"] == 120.0
    # sale_fee do order_item já é o total da linha
    assert row["items_total_sale_fee"] == 7.5
    assert row["first_item_id"] == "MLB123"
    assert row["first_item_variation_id"] == 987
    assert row["first_item_permalink"] == "https://produto.mercadolivre.com.br/MLB-123-camiseta-azul_JM"
    assert row["variation_color_names"] == ["Azul"]
    assert row["category_ids"] == ["MLB1234"]
    assert row["listing_type_ids"] == ["gold_special"]
    assert row["has_variations"] is True
    assert row["has_multiple_products"] is False
    assert row["pack_id"] == "2000001"


def test_present_mercado_livre_buyer_address_and_billing(payloads):
    row = order_presenters.present_mercado_livre(_raw(payloads), [], False)

    assert row["customer_name"] == "COMPRADOR1"
    assert row["id_buyer"] == 42
    assert row["shipping_state_uf"] == "SP"
    assert row["shipping_city_name"] == "São Paulo"
    assert row["shipping_street_name"] == "Rua das Flores"
    assert row["shipping_neighborhood"] == "Centro"
    assert row["shipping_zip_code"] == "01234-567"
    assert row["shipping_type"] == "cross_docking"
    assert row["billing_doc_type"] == "CPF"
    assert row["billing_doc_number"] == "123.456.789-01"
    assert row["billing_name"] == "Ana Silva"
    assert row["payment_status"] == "approved"
    assert row["payment_total_paid_amount"] == 110.0
    assert row["status_interno"] == StatusInterno.IMPRESSAO


def test_pack_id_from_order_when_numeric(payloads):
    order = payloads.ml_order()
    order["pack_id"] = 2000000999
    row = order_presenters.present_mercado_livre(_raw(payloads, order=order), [], False)
    assert row["pack_id"] == "2000000999"


def test_doc_type_inferred_from_number(payloads):
    raw = _raw(payloads, billing_info={"receiver": {"doc_number": "12.345.678/0001-90"}})
    assert order_presenters.present_mercado_livre(raw, [], False)["billing_doc_type"] == "CNPJ"


def test_cancelled_payment_wins_over_shipping(payloads):
    order = payloads.ml_order(payment_status="cancelled")
    row = order_presenters.present_mercado_livre(_raw(payloads, order=order), [], True)
    assert row["is_cancelled"] is True
    assert row["status_interno"] == StatusInterno.CANCELADO


def test_refunded_payment_is_cancelled(payloads):
    order = payloads.ml_order(payment_status="refunded")
    row = order_presenters.present_mercado_livre(_raw(payloads, order=order), [], False)
    assert row["is_refunded"] is True
    assert row["status_interno"] == StatusInterno.CANCELADO


@pytest.mark.parametrize("row, has_unlinked, expected", [
    ({"is_cancelled": True, "shipment_status": "ready_to_ship"}, False, StatusInterno.CANCELADO),
    ({"shipment_status": "not_delivered", "shipment_substatus": "returned_to_warehouse"}, False, StatusInterno.DEVOLUCAO),
    ({"shipping_type": "fulfillment", "shipment_status": "ready_to_ship"}, True, StatusInterno.ENVIADO),
    ({"shipment_status": "ready_to_ship", "shipment_substatus": "invoice_pending"}, True, StatusInterno.EMISSAO_NF),
    ({"shipment_status": "ready_to_ship", "shipment_substatus": "ready_to_print"}, True, StatusInterno.IMPRESSAO),
    ({"shipment_status": "ready_to_ship", "shipment_substatus": "printed", "printed_label": True}, False,
     StatusInterno.AGUARDANDO_COLETA),
    ({"shipment_status": "ready_to_ship", "shipment_substatus": "dropped_off", "status": "paid"}, False,
     StatusInterno.ENVIADO),
    ({"shipment_status": "delivered"}, True, StatusInterno.ENVIADO),
    ({"shipment_status": "pending"}, True, StatusInterno.A_VINCULAR),
    ({"shipment_status": "pending"}, False, StatusInterno.PENDENTE),
])
def test_ml_status_interno_rules(row, has_unlinked, expected):
    assert order_presenters.ml_status_interno(row, has_unlinked) == expected


def test_label_fields_only_when_cached():
    cached = order_presenters.ml_label_fields({
        "cached": True, "response_type": "pdf", "content_base64": "QUJD", "pdf_base64": "QUJD",
        "content_type": "application/pdf", "size_bytes": 3, "fetched_at": "2024-01-10T13:00:00Z",
    })
    assert cached["label_cached"] is True
    assert cached["label_pdf_base64"] == "QUJD"
    assert cached["label_size_bytes"] == 3

    failed = order_presenters.ml_label_fields({"error": True, "message": "no shipments found"})
    assert failed["label_cached"] is False
    assert failed["label_content_base64"] is None


def test_ml_item_rows(payloads):
    rows = order_presenters.ml_item_rows(_raw(payloads), "2000001")
    assert rows == [{
        "id": "raw-1",
        "pack_id": "2000001",
        "model_sku_externo": "CAM-AZ",
        "model_id_externo": "987",
        "variation_name": "Azul",
        "item_name": "Camiseta Azul",
        "quantity": 2,
        "unit_price": 50.0,
        "image_url": "https://http2.mlstatic.com/camiseta.jpg",
    }]


def test_item_without_variation_uses_listing_id(payloads):
    order = payloads.ml_order()
    order["order_items"][0]["item"].pop("variation_id")
    keys = order_presenters.ml_link_keys(_raw(payloads, order=order))
    assert keys[0]["external_id"] == "MLB123"
    assert keys[0]["variation_id"] == ""
