"""
Parsing de endereços brasileiros em texto livre
"""
import re
import unicodedata
from typing import Dict, Optional

CEP_RE = re.compile(r"\b\d{5}-?\d{3}\b")

UF_BY_STATE = {
    "acre": "AC",
    "alagoas": "AL",
    "amapa": "AP",
    "amazonas": "AM",
    "bahia": "BA",
    "ceara": "CE",
    "distrito federal": "DF",
    "espirito santo": "ES",
    "goias": "GO",
    "maranhao": "MA",
    "mato grosso": "MT",
    "mato grosso do sul": "MS",
    "minas gerais": "MG",
    "para": "PA",
    "paraiba": "PB",
    "parana": "PR",
    "pernambuco": "PE",
    "piaui": "PI",
    "rio de janeiro": "RJ",
    "rio grande do norte": "RN",
    "rio grande do sul": "RS",
    "rondonia": "RO",
    "roraima": "RR",
    "santa catarina": "SC",
    "sao paulo": "SP",
    "sergipe": "SE",
    "tocantins": "TO",
}


def _strip_accents(text: str) -> str:
    normalized = unicodedata.normalize("NFD", text)
    return "".join(c for c in normalized if unicodedata.category(c) != "Mn")


def br_uf_from_state(state: Optional[str]) -> Optional[str]:
    """Nome do estado (com ou sem acento) -> sigla UF"""
    if not state:
        return None
    key = _strip_accents(state.strip().lower())
    key = re.sub(r"\s+", " ", key)
    if key.upper() in UF_BY_STATE.values():
        return key.upper()
    return UF_BY_STATE.get(key)


def parse_br_address(line: Optional[str]) -> Dict[str, Optional[str]]:
    """
    Extrai rua, número e bairro de uma linha como
    "Rua das Flores, 123 - Centro - São Paulo 01234-567"
    """
    result = {"street_name": None, "street_number": None, "neighborhood_name": None}
    if not line:
        return result

    text = line.strip()
    cep = CEP_RE.search(text)
    cleaned = (text.replace(cep.group(0), "") if cep else text).strip()
    parts = re.split(r"\s*-\s*", cleaned)
    first = (parts[0] or cleaned).strip()

    match = re.match(r"^(.+?)[, ]+(\d+\w*)", first)
    if match:
        result["street_name"] = match.group(1).strip() or None
        result["street_number"] = match.group(2).strip() or None
    else:
        name = re.match(r"^(.+?)(?:,|$)", first)
        if name:
            result["street_name"] = name.group(1).strip() or None
        number = re.search(r"(\d+\w*)", first)
        if number:
            result["street_number"] = number.group(1).strip() or None

    if len(parts) > 1:
        neighborhood = parts[1].strip()
        if neighborhood and not re.search(r"\b(cidade|estado|uf)\b", neighborhood, re.IGNORECASE):
            result["neighborhood_name"] = neighborhood
    return result
