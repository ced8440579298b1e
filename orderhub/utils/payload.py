"""
Helpers para extrair campos de payloads JSON aninhados dos marketplaces
"""
import json
import re
import unicodedata
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    """Agora em UTC, sem tzinfo (padrão das colunas DateTime)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def get_path(obj: Any, path: str) -> Any:
    """Navega por 'a.b.0.c'; segmentos numéricos indexam listas"""
    cur = obj
    for part in path.split("."):
        if cur is None:
            return None
        if isinstance(cur, list):
            if not part.isdigit():
                return None
            idx = int(part)
            cur = cur[idx] if idx < len(cur) else None
        elif isinstance(cur, dict):
            cur = cur.get(part)
        else:
            return None
    return cur


def get_str(obj: Any, path: str) -> Optional[str]:
    value = get_path(obj, path)
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def to_num(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = re.sub(r"[^0-9.,-]", "", value).replace(",", ".", 1)
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def get_num(obj: Any, path: str) -> Optional[float]:
    return to_num(get_path(obj, path))


def first_of(*values: Any) -> Any:
    """Primeiro valor que não seja None nem string vazia"""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def digits_only(value: Any) -> str:
    return re.sub(r"\D", "", str(value or ""))


def to_int_if_digits(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def sanitize_url(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = re.sub(r"[\s`]+", "", value)
    return cleaned or None


def slugify(text: Optional[str]) -> str:
    normalized = unicodedata.normalize("NFD", text or "")
    ascii_text = normalized.encode("ascii", "ignore").decode("ascii").lower()
    return re.sub(r"[^a-z0-9]+", "-", ascii_text).strip("-")


def ml_permalink(item_id: Optional[str], title: Optional[str]) -> Optional[str]:
    """Monta o permalink público do anúncio (MLB123 -> MLB-123-titulo_JM)"""
    if not item_id:
        return None
    match = re.match(r"^([A-Z]+)-?(\d+)$", str(item_id).strip())
    if not match:
        return None
    slug = slugify(title)
    base = f"https://produto.mercadolivre.com.br/{match.group(1)}-{match.group(2)}"
    return f"{base}-{slug}_JM" if slug else f"{base}_JM"


def epoch_to_datetime(value: Any) -> Optional[datetime]:
    seconds = to_num(value)
    if seconds is None or seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


def epoch_to_iso(value: Any) -> Optional[str]:
    dt = epoch_to_datetime(value)
    return dt.isoformat() + "Z" if dt else None


def parse_datetime(value: Any) -> Optional[datetime]:
    """Converte ISO-8601 (com Z ou offset) para datetime UTC sem tzinfo"""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip().replace("Z", "+00:00")
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def try_parse_json(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("{") or text.startswith("["):
            try:
                return json.loads(text)
            except ValueError:
                return value
    return value


def normalize_order_numbers(order: Dict[str, Any]) -> Dict[str, Any]:
    """buyer.id e pack_id viram inteiros quando numéricos; caso contrário são removidos"""
    data = dict(order or {})
    buyer = data.get("buyer")
    if isinstance(buyer, dict) and "id" in buyer:
        buyer = dict(buyer)
        buyer_id = to_int_if_digits(buyer.get("id"))
        if isinstance(buyer_id, int) and not isinstance(buyer_id, bool):
            buyer["id"] = buyer_id
        else:
            buyer.pop("id", None)
        data["buyer"] = buyer
    if "pack_id" in data:
        pack_id = to_int_if_digits(data.get("pack_id"))
        if isinstance(pack_id, int) and not isinstance(pack_id, bool):
            data["pack_id"] = pack_id
        else:
            data.pop("pack_id", None)
    return data
