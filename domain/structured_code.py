# domain/structured_code.py

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Optional
from urllib.parse import parse_qs, unquote, urlsplit

from jsonschema import Draft7Validator

from domain.label_models import CodeKind, PayloadFormat, StructuredCode
from domain.label_normalizer import normalize_batch_code, parse_expiry_date, to_display, to_iso

logger = logging.getLogger(__name__)

_SCALAR = {"type": ["string", "number"]}

# Schéma des charges utiles QR auto-descriptives (clés inconnues tolérées)
STRUCTURED_PAYLOAD_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": _SCALAR,
        "name": _SCALAR,
        "batch": _SCALAR,
        "batchCode": _SCALAR,
        "expiry": _SCALAR,
        "expiryDate": _SCALAR,
    },
}
_PAYLOAD_VALIDATOR = Draft7Validator(STRUCTURED_PAYLOAD_SCHEMA)

JSON_ALIASES = {
    "id": ("id",),
    "name": ("name",),
    "batch": ("batch", "batchCode"),
    "expiry": ("expiry", "expiryDate"),
}

URL_ALIASES = {
    "id": ("id",),
    "name": ("name",),
    "batch": ("batch", "batchCode"),
    "expiry": ("exp", "expiry", "expiryDate"),
}


_CODE_PREFIXES = (
    ("PROD-", CodeKind.PRODUCT),
    ("ORD-", CodeKind.ORDER),
    ("SHP-", CodeKind.SHIPMENT),
    ("PLT-", CodeKind.PALLET),
)


def classify_code(code: Optional[str]) -> CodeKind:
    upper = (code or "").strip().upper()
    for prefix, kind in _CODE_PREFIXES:
        if upper.startswith(prefix):
            return kind
    return CodeKind.UNKNOWN


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _first_present(source: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = source.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _build_code(payload_format: PayloadFormat, fields: Dict[str, Optional[str]], code: Optional[str] = None) -> StructuredCode:
    expiry = parse_expiry_date(fields.get("expiry"))
    if fields.get("expiry") and expiry is None:
        logger.info("Date de péremption du code structuré illisible: %r", fields.get("expiry"))

    return StructuredCode(
        payload_format=payload_format,
        id=fields.get("id"),
        name=fields.get("name"),
        batch=normalize_batch_code(fields.get("batch")),
        expiry_iso=to_iso(expiry) if expiry else None,
        expiry_display=to_display(expiry) if expiry else None,
        code=code,
        kind=classify_code(fields.get("id") or code),
    )


def _try_json_object(payload: str) -> Optional[Dict[str, Any]]:
    if not payload.startswith("{"):
        return None
    try:
        parsed = json.loads(payload)
    except ValueError:
        logger.debug("Charge utile QR: JSON invalide, autre stratégie tentée.")
        return None
    if not isinstance(parsed, dict):
        return None

    invalid_keys = set()
    for error in _PAYLOAD_VALIDATOR.iter_errors(parsed):
        if error.path:
            invalid_keys.add(error.path[0])
        logger.warning("Champ QR non conforme ignoré: %s", error.message)
    return {key: value for key, value in parsed.items() if key not in invalid_keys}


def _decode_url(payload: str) -> Optional[StructuredCode]:
    parts = urlsplit(payload)
    # http(s) ou schéma applicatif (wms://...), tant qu'un hôte est présent
    if not parts.scheme or not parts.netloc:
        return None

    query = {key: values[0] for key, values in parse_qs(parts.query).items() if values}
    fields = {name: _first_present(query, aliases) for name, aliases in URL_ALIASES.items()}
    if any(fields.values()):
        return _build_code(PayloadFormat.URL, fields)

    # Lien sans paramètres : le dernier segment du chemin porte l'identifiant
    segments = [unquote(segment) for segment in parts.path.split("/") if segment.strip()]
    code = segments[-1].strip() if segments else payload
    logger.debug("URL sans paramètres reconnus, code retenu: %s", code)
    return _build_code(PayloadFormat.URL, {}, code=code)


# ---------------------------------------------------------------------------
# Point d'entrée
# ---------------------------------------------------------------------------

def decode_structured_payload(payload: Optional[str]) -> StructuredCode:
    """
    Interprète une charge utile QR déjà décodée.

    Ordre : objet JSON, URL (paramètres de requête), PREFIXE:VALEUR,
    puis chaîne opaque. Lève ValueError si la charge utile est vide.
    """
    text = (payload or "").strip()
    if not text:
        raise ValueError("Charge utile QR vide.")

    json_object = _try_json_object(text)
    if json_object is not None:
        fields = {name: _first_present(json_object, aliases) for name, aliases in JSON_ALIASES.items()}
        decoded = _build_code(PayloadFormat.JSON, fields)
        logger.info("Code structuré JSON décodé (id=%s).", decoded.id)
        return decoded

    decoded = _decode_url(text)
    if decoded is not None:
        logger.info("Code structuré URL décodé (id=%s, code=%s).", decoded.id, decoded.code)
        return decoded

    if ":" in text:
        value = text.split(":", 1)[1].strip()
        if not value:
            logger.warning("Code préfixé sans valeur: %r", text)
        return _build_code(PayloadFormat.PREFIXED, {}, code=value or None)

    return _build_code(PayloadFormat.OPAQUE, {}, code=text)
