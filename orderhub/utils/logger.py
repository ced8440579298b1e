"""
Logging das integrações com marketplaces
"""
import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from orderhub.config.settings import settings


class IntegrationLogger:
    """Logger de eventos de integração (arquivo geral + JSON lines por organização/evento)"""
    
    def __init__(self, log_dir: Optional[str] = None):
        self.log_dir = Path(log_dir or settings.log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        
        self.logger = logging.getLogger("orderhub.integrations")
        self.logger.setLevel(logging.INFO)
        
        # Evitar duplicação de handlers
        if not self.logger.handlers:
            general_handler = logging.FileHandler(
                self.log_dir / "system.log",
                encoding='utf-8'
            )
            general_handler.setLevel(logging.INFO)
            general_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(levelname)s - %(message)s'
            ))
            self.logger.addHandler(general_handler)
    
    def log_event(self, event_type: str, data: Dict[str, Any], organization_id: Optional[str] = None,
                  success: bool = True, error_message: Optional[str] = None):
        """Log genérico para qualquer evento de integração"""
        try:
            log_entry = {
                "timestamp": datetime.now().isoformat(),
                "event_type": event_type,
                "organization_id": organization_id,
                "success": success,
                "error_message": error_message,
                "data": data
            }
            
            if success:
                self.logger.info(f"✅ {event_type}: {data.get('description', 'Evento processado')} - Org: {organization_id}")
            else:
                self.logger.error(f"❌ {event_type}: {data.get('description', 'Erro no evento')} - Org: {organization_id} - Erro: {error_message}")
            
            if organization_id:
                self._append(f"org_{organization_id}.log", log_entry)
            self._append(f"{self._safe_name(event_type)}.log", log_entry)
            
        except Exception as e:
            self.logger.error(f"❌ Erro ao logar evento {event_type}: {e}")
    
    def log_order_processed(self, marketplace: str, order_id: str, organization_id: Optional[str],
                            success: bool, action: str, error_message: Optional[str] = None):
        """Log específico para processamento de pedidos"""
        data = {
            "marketplace": marketplace,
            "order_id": order_id,
            "action": action,  # "created", "updated", "error"
            "description": f"Pedido {marketplace} {order_id} {action}"
        }
        self.log_event("order_processed", data, organization_id, success, error_message)
    
    def log_external_api_call(self, service: str, endpoint: str, organization_id: Optional[str] = None,
                              success: bool = True, response_code: Optional[int] = None,
                              error_message: Optional[str] = None):
        """Log para chamadas a APIs externas"""
        data = {
            "service": service,
            "endpoint": endpoint,
            "response_code": response_code,
            "description": f"External API {service}: {endpoint}"
        }
        self.log_event("external_api_call", data, organization_id, success, error_message)
    
    def read_events(self, event_type: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Recupera os últimos eventos de um tipo"""
        path = self.log_dir / f"{self._safe_name(event_type)}.log"
        if not path.exists():
            return []
        entries = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f.readlines()[-limit:]:
                try:
                    entries.append(json.loads(line.strip()))
                except json.JSONDecodeError:
                    continue
        return entries
    
    @staticmethod
    def _safe_name(event_type: str) -> str:
        return event_type.replace("/", "_").replace("\\", "_").replace(":", "_")
    
    def _append(self, filename: str, log_entry: Dict[str, Any]):
        try:
            with open(self.log_dir / filename, "a", encoding="utf-8") as f:
                f.write(json.dumps(log_entry, ensure_ascii=False, default=str) + "\n")
        except Exception as e:
            self.logger.error(f"❌ Erro ao escrever log {filename}: {e}")


class SyncTrace:
    """Coleta eventos de debug de uma execução, devolvidos na resposta"""
    
    def __init__(self, correlation_id: Optional[str] = None, logger: Optional[logging.Logger] = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.events: List[Dict[str, Any]] = []
        self._logger = logger or logging.getLogger(__name__)
    
    def add(self, stage: str, **fields: Any) -> None:
        event = {"stage": stage}
        event.update(fields)
        self.events.append(event)
        self._logger.debug(f"[{self.correlation_id}] {stage} {fields}")


def correlation_id_from_headers(headers: Any) -> str:
    """x-request-id / x-correlation-id, ou um uuid novo"""
    if headers is not None:
        for name in ("x-request-id", "x-correlation-id"):
            value = headers.get(name)
            if value:
                return value
    return str(uuid.uuid4())


_integration_logger: Optional[IntegrationLogger] = None


def get_integration_logger() -> IntegrationLogger:
    """Instância global (criada sob demanda para respeitar LOG_DIR)"""
    global _integration_logger
    if _integration_logger is None:
        _integration_logger = IntegrationLogger()
    return _integration_logger
