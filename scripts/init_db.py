#!/usr/bin/env python3
"""
Cria as tabelas do OrderHub direto pelo metadata e marca o Alembic em head,
para que `alembic upgrade head` não tente recriar o schema depois.

Uso: python scripts/init_db.py [--no-stamp]
"""
import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402
from sqlalchemy import inspect  # noqa: E402

from orderhub.config.database import Base, engine  # noqa: E402
from orderhub.models import marketplace_models  # noqa: E402,F401

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("init_db")

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

REQUIRED_TABLES = (
    "marketplace_integrations",
    "marketplace_orders_raw",
    "marketplace_orders_presented",
    "marketplace_order_items",
    "inventory_jobs",
)


def init_database(stamp: bool = True):
    logger.info("🗄️ Criando tabelas do OrderHub...")
    Base.metadata.create_all(bind=engine, checkfirst=True)

    tables = set(inspect(engine).get_table_names())
    missing = [name for name in REQUIRED_TABLES if name not in tables]
    if missing:
        raise RuntimeError(f"Tabelas ausentes após create_all: {', '.join(missing)}")
    logger.info(f"📊 {len(tables)} tabelas disponíveis")

    if stamp:
        config = Config(os.path.join(ROOT_DIR, "alembic.ini"))
        config.set_main_option("script_location", os.path.join(ROOT_DIR, "migrations"))
        command.stamp(config, "head")
        logger.info("🏷️ Alembic marcado em head")


if __name__ == "__main__":
    try:
        init_database(stamp="--no-stamp" not in sys.argv[1:])
    except Exception as e:
        logger.error(f"❌ Erro ao inicializar banco de dados: {e}")
        sys.exit(1)
