# domain/label_normalizer.py

"""
Normalisation des champs lus sur les étiquettes.

- codes de lot : majuscules, caractères autorisés, correction des confusions
  lettre/chiffre typiques de l'OCR ;
- dates de péremption : formats hétérogènes ramenés à une date ISO
  (minuit UTC) et à un affichage dd/mm/yyyy.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timezone
from typing import Any, Optional

from domain.label_models import ExtractedFields, NormalizedFields

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Codes de lot
# ---------------------------------------------------------------------------

_BATCH_FORBIDDEN_RE = re.compile(r"[^A-Z0-9/\-]")

_DIGIT_CONFUSIONS = {
    "O": "0",
    "I": "1",
    "S": "5",
    "B": "8",
    "Z": "2",
}


def _substitute_confusions(code: str) -> str:
    chars = list(code)
    for index, char in enumerate(code):
        if char not in _DIGIT_CONFUSIONS:
            continue
        before = code[index - 1] if index > 0 else ""
        after = code[index + 1] if index + 1 < len(code) else ""
        if before.isdigit() or after.isdigit():
            chars[index] = _DIGIT_CONFUSIONS[char]
    return "".join(chars)


def normalize_batch_code(raw: Optional[Any]) -> Optional[str]:
    """
    Normalise un code de lot lu par OCR.

    Une lettre n'est remplacée par le chiffre qu'elle imite que si elle touche
    un chiffre. La substitution est répétée jusqu'à stabilité, ce qui rend la
    fonction idempotente.
    """
    if raw is None:
        return None
    code = _BATCH_FORBIDDEN_RE.sub("", str(raw).strip().upper())
    if not code:
        return None

    while True:
        substituted = _substitute_confusions(code)
        if substituted == code:
            break
        code = substituted

    return code


def clean_code(raw: Optional[Any]) -> Optional[str]:
    """Forme brute comparable d'un code (sans correction OCR)."""
    if raw is None:
        return None
    cleaned = _BATCH_FORBIDDEN_RE.sub("", str(raw).strip().upper())
    return cleaned or None


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

DISPLAY_FORMAT = "%d/%m/%Y"

_DAY_FIRST_RE = re.compile(r"^(\d{1,2})([/\-])(\d{1,2})\2(\d{2}|\d{4})$")
_ISO_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_TEXTUAL_RE = re.compile(r"^(\d{1,2})\s*([A-Za-z]+)\.?\s*,?\s*(\d{2}|\d{4})$")
_DISPLAY_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")

# Dernier recours, dans l'ordre
_GENERIC_FORMATS = (
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%d.%m.%y",
    "%Y%m%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B, %Y",
)


def _expand_year(raw_year: str) -> int:
    year = int(raw_year)
    return 2000 + year if len(raw_year) == 2 else year


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _parse_day_first(text: str) -> Optional[date]:
    match = _DAY_FIRST_RE.match(text)
    if not match:
        return None
    first, separator, second, raw_year = match.groups()
    year = _expand_year(raw_year)

    parsed = _safe_date(year, int(second), int(first))
    if parsed is not None:
        return parsed

    # mm/dd/yyyy : uniquement avec une année 19xx/20xx complète
    if separator == "/" and len(raw_year) == 4 and raw_year[:2] in ("19", "20"):
        parsed = _safe_date(year, int(first), int(second))
        if parsed is not None:
            logger.debug("parse_expiry_date: '%s' interprétée en mm/dd/yyyy.", text)
        return parsed
    return None


def _parse_iso(text: str) -> Optional[date]:
    match = _ISO_RE.match(text)
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    return _safe_date(year, month, day)


def _parse_textual(text: str) -> Optional[date]:
    match = _TEXTUAL_RE.match(text)
    if not match:
        return None
    raw_day, raw_month, raw_year = match.groups()
    month = MONTHS.get(raw_month.lower())
    if month is None:
        return None
    return _safe_date(_expand_year(raw_year), month, int(raw_day))


def _parse_generic(text: str) -> Optional[date]:
    try:
        parsed_dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if parsed_dt.tzinfo is not None:
            parsed_dt = parsed_dt.astimezone(timezone.utc)
        return parsed_dt.date()
    except ValueError:
        pass

    for fmt in _GENERIC_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_expiry_date(raw: Optional[Any]) -> Optional[date]:
    """
    Interprète une date de péremption lue sur une étiquette.

    Ordre : dd/mm/yyyy | dd-mm-yyyy (année à 2 chiffres => 20xx), yyyy-mm-dd,
    mm/dd/yyyy (année 19xx/20xx uniquement), dd Mon yyyy, puis formats
    génériques. Retourne None plutôt qu'une valeur douteuse.
    """
    if raw is None:
        return None
    text = re.sub(r"\s+", " ", str(raw)).strip().strip(".,;:")
    if not text:
        return None

    for parser in (_parse_day_first, _parse_iso, _parse_textual, _parse_generic):
        parsed = parser(text)
        if parsed is not None:
            return parsed

    logger.debug("parse_expiry_date: date illisible '%s' -> ignorée.", text)
    return None


def to_iso(value: date) -> str:
    return value.isoformat()


def to_iso_timestamp(value: date) -> str:
    """Représentation canonique : minuit UTC."""
    return datetime.combine(value, time(0, 0), tzinfo=timezone.utc).isoformat()


def to_display(value: date) -> str:
    return value.strftime(DISPLAY_FORMAT)


def parse_display(text: str) -> date:
    """Inverse de to_display. Lève ValueError si le format est invalide."""
    match = _DISPLAY_RE.match((text or "").strip())
    if not match:
        raise ValueError(f"Date d'affichage invalide (dd/mm/yyyy attendu): {text!r}")
    day, month, year = (int(part) for part in match.groups())
    return date(year, month, day)


def parse_to_iso(raw: Optional[Any]) -> Optional[str]:
    parsed = parse_expiry_date(raw)
    return to_iso(parsed) if parsed else None


def iso_to_display(iso_value: str) -> str:
    return to_display(date.fromisoformat(iso_value))


def display_to_iso(display_value: str) -> str:
    return to_iso(parse_display(display_value))


# ---------------------------------------------------------------------------
# Normalisation groupée
# ---------------------------------------------------------------------------

def normalize_fields(extracted: ExtractedFields) -> NormalizedFields:
    batch = normalize_batch_code(extracted.batch_code)
    expiry = parse_expiry_date(extracted.expiry_date)
    if extracted.expiry_date and expiry is None:
        logger.info("Date de péremption non interprétable écartée: %r", extracted.expiry_date)

    return NormalizedFields(
        batch_code=batch,
        expiry_date_iso=to_iso(expiry) if expiry else None,
        expiry_date_display=to_display(expiry) if expiry else None,
    )
