import atexit
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from orderhub.config.database import Base, engine
from orderhub.config.settings import settings
# registra as tabelas no metadata
from orderhub.models import marketplace_models  # noqa: F401
from orderhub.routes.ml_routes import ml_router
from orderhub.routes.orders_routes import orders_router
from orderhub.routes.shopee_routes import shopee_router
from orderhub.services.auto_sync_service import AutoSyncService

logger = logging.getLogger(__name__)

# Inicializar FastAPI
app = FastAPI(
    title="OrderHub - Conector de pedidos Mercado Livre e Shopee",
    description="OAuth, sincronização e normalização de pedidos de marketplaces",
    version="1.0.0",
    docs_url="/docs"
)

# Configurar CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Inicializar scheduler
scheduler = BackgroundScheduler()
auto_sync_service = AutoSyncService()


def run_ml_sync():
    """JOB 1: Pedidos ML incrementais"""
    try:
        result = auto_sync_service.sync_ml_orders()
        if result.get("success"):
            logger.info(f"✅ Auto-sync ML: {result.get('message', 'Concluído')}")
        else:
            logger.error(f"❌ Auto-sync ML com falhas: {result.get('message')}")
    except Exception as e:
        logger.exception(f"❌ Erro na auto-sync ML: {e}")


def run_shopee_sync():
    """JOB 2: Pedidos Shopee das últimas 24h"""
    try:
        result = auto_sync_service.sync_shopee_orders()
        if result.get("success"):
            logger.info(f"✅ Auto-sync Shopee: {result.get('message', 'Concluído')}")
        else:
            logger.error(f"❌ Auto-sync Shopee com falhas: {result.get('message')}")
    except Exception as e:
        logger.exception(f"❌ Erro na auto-sync Shopee: {e}")


def run_inventory_jobs():
    """JOB 3: Worker de jobs de estoque"""
    try:
        auto_sync_service.run_inventory_jobs()
    except Exception as e:
        logger.exception(f"❌ Erro no worker de estoque: {e}")


scheduler.add_job(
    func=run_ml_sync,
    trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
    id='auto_sync_ml_orders',
    name='Sincronização automática - Pedidos ML',
    replace_existing=True
)

scheduler.add_job(
    func=run_shopee_sync,
    trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
    id='auto_sync_shopee_orders',
    name='Sincronização automática - Pedidos Shopee (24h)',
    replace_existing=True
)

scheduler.add_job(
    func=run_inventory_jobs,
    trigger=IntervalTrigger(minutes=settings.inventory_jobs_interval_minutes),
    id='inventory_jobs_worker',
    name='Worker de jobs de estoque',
    replace_existing=True
)


@app.on_event("startup")
async def startup_event():
    """Evento de inicialização da aplicação"""
    logger.info("🚀 [STARTUP] Iniciando aplicação...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("✅ Banco de dados inicializado")
    except SQLAlchemyError as e:
        logger.error(f"❌ [STARTUP] Falha ao criar tabelas: {e}")
        raise

    if settings.enable_scheduler and not scheduler.running:
        scheduler.start()
        logger.info(f"🔧 [STARTUP] Scheduler iniciado com {len(scheduler.get_jobs())} jobs")
    else:
        logger.info("🔄 [STARTUP] Scheduler desabilitado")


@app.on_event("shutdown")
async def shutdown_event():
    """Evento de encerramento da aplicação"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("🛑 Scheduler de sincronização automática parado")


# Garantir que o scheduler seja parado ao sair
atexit.register(lambda: scheduler.shutdown() if scheduler.running else None)

app.include_router(ml_router, prefix="/api/mercadolivre")
app.include_router(shopee_router, prefix="/api/shopee")
app.include_router(orders_router, prefix="/api/orders")


@app.get("/health")
async def health_check():
    """Verifica saúde da API"""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "scheduler": scheduler.running,
    }
