"""
Modelos de integração com marketplaces (Mercado Livre e Shopee)
"""
import enum
import uuid

from sqlalchemy import Column, Integer, BigInteger, String, Text, Boolean, DateTime, Enum, JSON, Index, Numeric, UniqueConstraint
from sqlalchemy.sql import func

from orderhub.config.database import Base


def new_uuid() -> str:
    return str(uuid.uuid4())


class Marketplace:
    """Nomes canônicos dos marketplaces suportados"""
    MERCADO_LIVRE = "Mercado Livre"
    SHOPEE = "Shopee"


class StatusInterno:
    """Status interno derivado dos status/substatus do marketplace"""
    CANCELADO = "Cancelado"
    DEVOLUCAO = "Devolução"
    ENVIADO = "Enviado"
    EMISSAO_NF = "Emissao NF"
    IMPRESSAO = "Impressao"
    AGUARDANDO_COLETA = "Aguardando Coleta"
    A_VINCULAR = "A vincular"
    PENDENTE = "Pendente"


class InventoryJobType(enum.Enum):
    """Tipos de job de estoque"""
    RESERVE = "reserve"
    CONSUME = "consume"
    REFUND = "refund"


class InventoryJobStatus(enum.Enum):
    """Status do job de estoque"""
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class ReservationStatus(enum.Enum):
    """Status da reserva de estoque do pedido"""
    RESERVED = "reserved"
    CONSUMED = "consumed"
    REFUNDED = "refunded"


class Company(Base):
    """Empresa pertencente a uma organização"""
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organization_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255))
    created_at = Column(DateTime, default=func.now())


class MarketplaceApp(Base):
    """Credenciais do aplicativo OAuth por marketplace"""
    __tablename__ = "apps"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(100), unique=True, nullable=False)
    client_id = Column(String(255))
    client_secret = Column(Text)
    auth_url = Column(String(500))
    config = Column(JSON)
    created_at = Column(DateTime, default=func.now())


class MarketplaceIntegration(Base):
    """Loja conectada (conta ML ou shop Shopee)"""
    __tablename__ = "marketplace_integrations"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organizations_id = Column(String(36), nullable=False, index=True)
    company_id = Column(String(36), index=True)
    marketplace_name = Column(String(50), nullable=False, index=True)

    # Tokens OAuth (criptografados em repouso, formato enc:gcm:...)
    access_token = Column(Text)
    refresh_token = Column(Text)
    expires_at = Column(DateTime)

    # user_id do ML ou shop_id da Shopee
    meli_user_id = Column(String(50), index=True)
    config = Column(JSON)
    enabled = Column(Boolean, default=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class MarketplaceOrderRaw(Base):
    """Payload bruto do pedido, como retornado pela API do marketplace"""
    __tablename__ = "marketplace_orders_raw"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organizations_id = Column(String(36), nullable=False, index=True)
    company_id = Column(String(36))
    marketplace_name = Column(String(50), nullable=False)
    marketplace_order_id = Column(String(50), nullable=False)

    status = Column(String(50))
    status_detail = Column(String(255))

    # === DADOS JSON DO MARKETPLACE ===
    order_items = Column(JSON)
    buyer = Column(JSON)
    seller = Column(JSON)
    payments = Column(JSON)
    shipments = Column(JSON)
    billing_info = Column(JSON)
    labels = Column(JSON)
    feedback = Column(JSON)
    tags = Column(JSON)
    data = Column(JSON)
    linked_products = Column(JSON)

    # === DATAS ===
    date_created = Column(DateTime)
    date_closed = Column(DateTime)
    last_updated = Column(DateTime)
    last_synced_at = Column(DateTime)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("organizations_id", "marketplace_name", "marketplace_order_id",
                         name="uq_orders_raw_org_marketplace_order"),
        Index("ix_orders_raw_last_updated", "organizations_id", "marketplace_name", "last_updated"),
    )


class MarketplaceOrderPresented(Base):
    """Pedido normalizado, pronto para exibição. O id é o mesmo do pedido bruto"""
    __tablename__ = "marketplace_orders_presented"

    id = Column(String(36), primary_key=True)
    organizations_id = Column(String(36), index=True)
    company_id = Column(String(36))
    marketplace = Column(String(50))
    marketplace_order_id = Column(String(50), index=True)

    status = Column(String(50))
    status_detail = Column(String(255))
    status_interno = Column(String(50), index=True)
    created_at = Column(DateTime)
    last_updated = Column(DateTime)
    last_synced_at = Column(DateTime)

    order_total = Column(Numeric(12, 2, asdecimal=False))
    has_multiple_products = Column(Boolean, default=False)
    has_unlinked_items = Column(Boolean, default=False)

    # === PRIMEIRO ITEM ===
    first_item_id = Column(String(50))
    first_item_title = Column(String(500))
    first_item_sku = Column(String(100))
    first_item_variation_id = Column(BigInteger)
    first_item_permalink = Column(String(1000))

    # === AGREGADOS DOS ITENS ===
    items_total_quantity = Column(Integer)
    items_total_amount = Column(Numeric(12, 2, asdecimal=False))
    items_total_full_amount = Column(Numeric(12, 2, asdecimal=False))
    items_total_sale_fee = Column(Numeric(12, 2, asdecimal=False))
    items_currency_id = Column(String(10))
    category_ids = Column(JSON)
    listing_type_ids = Column(JSON)
    stock_node_ids = Column(JSON)
    has_variations = Column(Boolean, default=False)
    has_bundle = Column(Boolean, default=False)
    has_kit = Column(Boolean, default=False)
    variation_color_names = Column(JSON)
    pack_id = Column(String(50), index=True)
    linked_products = Column(JSON)

    # === COMPRADOR ===
    id_buyer = Column(BigInteger)
    first_name_buyer = Column(String(255))
    last_name_buyer = Column(String(255))
    customer_name = Column(String(255))

    # === ENDEREÇO DE ENTREGA ===
    shipping_city_name = Column(String(255))
    shipping_state_name = Column(String(255))
    shipping_state_uf = Column(String(2))
    shipping_address_line = Column(String(500))
    shipping_street_name = Column(String(255))
    shipping_street_number = Column(String(50))
    shipping_neighborhood = Column(String(255))
    shipping_zip_code = Column(String(20))
    shipping_comment = Column(String(500))

    # === ENVIO ===
    shipment_status = Column(String(50))
    shipment_substatus = Column(String(50))
    shipping_type = Column(String(100))
    shipping_method_name = Column(String(255))
    estimated_delivery_limit_at = Column(String(50))
    shipment_sla_status = Column(String(50))
    shipment_sla_service = Column(String(100))
    shipment_sla_expected_date = Column(String(50))
    shipment_sla_last_updated = Column(String(50))
    shipment_delays = Column(JSON)
    printed_label = Column(Boolean, default=False)
    tracking_number = Column(String(100))
    shipping_info = Column(JSON)
    ship_order_planned_at = Column(DateTime)

    # === PAGAMENTO ===
    payment_status = Column(String(50))
    payment_total_paid_amount = Column(Numeric(12, 2, asdecimal=False))
    payment_marketplace_fee = Column(Numeric(12, 2, asdecimal=False))
    payment_shipping_cost = Column(Numeric(12, 2, asdecimal=False))
    payment_date_created = Column(String(50))
    payment_date_approved = Column(String(50))
    payment_refunded_amount = Column(Numeric(12, 2, asdecimal=False))
    is_cancelled = Column(Boolean, default=False)
    is_refunded = Column(Boolean, default=False)

    # === FATURAMENTO ===
    billing_doc_number = Column(String(50))
    billing_doc_type = Column(String(20))
    billing_email = Column(String(255))
    billing_phone = Column(String(50))
    billing_name = Column(String(255))
    billing_state_registration = Column(String(50))
    billing_taxpayer_type = Column(String(100))
    billing_cust_type = Column(String(50))
    billing_is_normalized = Column(Boolean)
    billing_address = Column(JSON)

    # === ETIQUETA EM CACHE ===
    label_cached = Column(Boolean, default=False)
    label_response_type = Column(String(20))
    label_fetched_at = Column(String(50))
    label_size_bytes = Column(Integer)
    label_content_base64 = Column(Text)
    label_content_type = Column(String(100))
    label_pdf_base64 = Column(Text)
    label_zpl2_base64 = Column(Text)

    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class MarketplaceOrderItem(Base):
    """Linha de item do pedido apresentado"""
    __tablename__ = "marketplace_order_items"

    row_id = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, index=True)  # id do pedido apresentado
    pack_id = Column(String(50), index=True)
    model_sku_externo = Column(String(100))
    model_id_externo = Column(String(50))
    variation_name = Column(String(255))
    item_name = Column(String(500))
    quantity = Column(Integer, default=1)
    unit_price = Column(Numeric(12, 2, asdecimal=False))
    image_url = Column(String(1000))
    linked_products = Column(String(36))
    has_unlinked_items = Column(Boolean, default=False)
    created_at = Column(DateTime, default=func.now())


class MarketplaceItemProductLink(Base):
    """Vínculo permanente anúncio/variação -> produto interno"""
    __tablename__ = "marketplace_item_product_links"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organizations_id = Column(String(36), nullable=False)
    company_id = Column(String(36))
    marketplace_name = Column(String(50), nullable=False)
    marketplace_item_id = Column(String(50), nullable=False)
    variation_id = Column(String(50), nullable=False, default="")
    product_id = Column(String(36), nullable=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint("organizations_id", "marketplace_name", "marketplace_item_id", "variation_id",
                         name="uq_item_product_link"),
    )


class MarketplaceItem(Base):
    """Anúncio sincronizado do marketplace"""
    __tablename__ = "marketplace_items"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organizations_id = Column(String(36), nullable=False)
    company_id = Column(String(36))
    marketplace_name = Column(String(50), nullable=False)
    marketplace_item_id = Column(String(50), nullable=False)

    title = Column(String(500))
    sku = Column(String(100))
    condition = Column(String(50))
    status = Column(String(50))
    price = Column(Numeric(12, 2, asdecimal=False))
    available_quantity = Column(Integer)
    sold_quantity = Column(Integer)
    category_id = Column(String(50))
    permalink = Column(String(1000))
    attributes = Column(JSON)
    variations = Column(JSON)
    pictures = Column(JSON)
    tags = Column(JSON)
    seller_id = Column(String(50))
    data = Column(JSON)
    published_at = Column(DateTime)
    last_synced_at = Column(DateTime)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("organizations_id", "marketplace_name", "marketplace_item_id",
                         name="uq_marketplace_item"),
    )


class Product(Base):
    """Produto interno"""
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organizations_id = Column(String(36), nullable=False, index=True)
    company_id = Column(String(36))
    sku = Column(String(100), index=True)
    name = Column(String(500))
    created_at = Column(DateTime, default=func.now())


class Storage(Base):
    """Depósito de estoque"""
    __tablename__ = "storage"

    id = Column(String(36), primary_key=True, default=new_uuid)
    organizations_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255))
    is_default = Column(Boolean, default=False)
    active = Column(Boolean, default=True)


class ProductStock(Base):
    """Saldo de estoque por produto e depósito"""
    __tablename__ = "products_stock"

    id = Column(String(36), primary_key=True, default=new_uuid)
    product_id = Column(String(36), nullable=False, index=True)
    storage_id = Column(String(36), nullable=False)
    company_id = Column(String(36))
    current = Column(Integer, default=0)
    reserved = Column(Integer, default=0)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("product_id", "storage_id", name="uq_product_stock_storage"),
    )

    @property
    def available(self) -> int:
        return (self.current or 0) - (self.reserved or 0)


class StockReservation(Base):
    """Reserva de estoque de um pedido"""
    __tablename__ = "order_stock_reservations"

    id = Column(String(36), primary_key=True, default=new_uuid)
    order_id = Column(String(36), nullable=False, index=True)
    product_id = Column(String(36), nullable=False)
    storage_id = Column(String(36), nullable=False)
    quantity = Column(Integer, default=0)
    status = Column(Enum(ReservationStatus), default=ReservationStatus.RESERVED)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", "storage_id", name="uq_reservation_order_product"),
    )


class InventoryJob(Base):
    """Fila durável de operações de estoque por pedido"""
    __tablename__ = "inventory_jobs"

    id = Column(String(36), primary_key=True, default=new_uuid)
    order_id = Column(String(36), nullable=False, index=True)
    job_type = Column(Enum(InventoryJobType), nullable=False)
    status = Column(Enum(InventoryJobStatus), default=InventoryJobStatus.PENDING, index=True)
    attempts = Column(Integer, default=0)
    error_log = Column(Text)
    correlation_id = Column(String(64))
    last_attempt_at = Column(DateTime)
    next_attempt_at = Column(DateTime)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class NotaFiscal(Base):
    """Nota fiscal emitida para um pedido"""
    __tablename__ = "notas_fiscais"

    id = Column(String(36), primary_key=True, default=new_uuid)
    company_id = Column(String(36))
    marketplace_order_id = Column(String(50), index=True)
    marketplace_submission_status = Column(String(50))
    created_at = Column(DateTime, default=func.now())
