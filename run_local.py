#!/usr/bin/env python3
"""
Script para rodar a API localmente
"""
import logging

import uvicorn

from orderhub.config.settings import settings


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    print("🚀 Iniciando OrderHub localmente...")
    print("="*50)
    print("📡 URLs Locais:")
    print(f"   • API: http://localhost:{settings.api_port}")
    print(f"   • Documentação: http://localhost:{settings.api_port}/docs")
    print(f"   • Health: http://localhost:{settings.api_port}/health")
    print()
    print("⚠️  IMPORTANTE:")
    print("   • Webhooks do ML e da Shopee precisam de uma URL pública")
    print(f"   • Scheduler: {'ativo' if settings.enable_scheduler else 'desativado'} (ENABLE_SCHEDULER)")
    print("="*50)
    print()

    uvicorn.run(
        "orderhub.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )


if __name__ == "__main__":
    main()
