# domain/field_extractor.py

from __future__ import annotations

import logging
import re
from typing import List, Optional

from domain.label_models import ExtractedFields
from domain.label_normalizer import MONTHS

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({"batch", "lot", "exp", "expiry", "bbe", "best", "before", "use", "by"})
MAX_NAME_TOKENS = 6
MIN_SIGNIFICANT_WORD_LENGTH = 4

_WHITESPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"[a-z0-9]+")
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")

_BATCH_LABELED_RE = re.compile(
    r"\b(?:BATCH(?:\s*CODE)?|LOT(?:\s*NO)?)\b[^\w]{0,3}"
    r"(?!(?:CODE|NO)\b)([A-Z0-9][A-Z0-9\-/]{2,})\b",
    re.IGNORECASE,
)
_PRODUCT_CODE_RE = re.compile(r"\b(PROD-[A-Z0-9\-]*[A-Z0-9])\b", re.IGNORECASE)
_BATCH_FALLBACK_RE = re.compile(r"\b([A-Z0-9][A-Z0-9\-/]{4,}[A-Z0-9])\b")

_TEXTUAL_DATE = r"\d{1,2}\s*[A-Za-z]{3,9}\.?\s*\d{2,4}"
_NUMERIC_DATE = r"\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}"
_ISO_DATE = r"\d{4}-\d{1,2}-\d{1,2}"

_EXPIRY_LABELED_RE = re.compile(
    r"\b(?:EXP(?:IRY)?(?:\s*DATE)?|BEST\s*BEFORE(?:\s*END)?|USE\s*BY|BBE)[\s:.\-]*"
    rf"({_TEXTUAL_DATE}|{_ISO_DATE}|{_NUMERIC_DATE}|[^\s,;]{{3,}})",
    re.IGNORECASE,
)
_EXPIRY_NUMERIC_RE = re.compile(rf"\b({_NUMERIC_DATE})\b")
_EXPIRY_ISO_RE = re.compile(rf"\b({_ISO_DATE})\b")
_EXPIRY_TEXTUAL_RE = re.compile(r"\b(\d{1,2})\s*([A-Za-z]{3,9})\.?\s*(\d{2,4})\b")
_DATE_LIKE_RE = re.compile(rf"^(?:{_NUMERIC_DATE}|{_ISO_DATE})$")


# ---------------------------------------------------------------------------
# Utilitaires texte
# ---------------------------------------------------------------------------

def collapse_whitespace(text: Optional[str]) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def significant_words(text: Optional[str]) -> List[str]:
    """Mots de longueur >= 4 hors mots-outils d'étiquette, en minuscules, sans doublon."""
    words: List[str] = []
    for word in _WORD_RE.findall((text or "").lower()):
        if len(word) < MIN_SIGNIFICANT_WORD_LENGTH or word in STOP_WORDS:
            continue
        if word not in words:
            words.append(word)
    return words


def find_product_codes(text: Optional[str]) -> List[str]:
    """Codes produit de type PROD-xxxx présents dans le texte, en majuscules."""
    codes: List[str] = []
    for match in _PRODUCT_CODE_RE.finditer(text or ""):
        code = match.group(1).upper()
        if code not in codes:
            codes.append(code)
    return codes


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def extract_batch_code(text: str) -> Optional[str]:
    match = _BATCH_LABELED_RE.search(text)
    if match:
        return match.group(1)

    match = _PRODUCT_CODE_RE.search(text)
    if match:
        return match.group(1)

    for match in _BATCH_FALLBACK_RE.finditer(text):
        token = match.group(1)
        if "-" not in token and "/" not in token:
            continue
        if not any(char.isdigit() for char in token):
            continue
        if _DATE_LIKE_RE.match(token):
            continue
        return token
    return None


def extract_expiry_date(text: str) -> Optional[str]:
    # Une valeur après libellé sans aucun chiffre n'est pas une date (ex: "EXPORT")
    for match in _EXPIRY_LABELED_RE.finditer(text):
        value = match.group(1).strip(".,;:")
        if any(char.isdigit() for char in value):
            return value

    for regex in (_EXPIRY_NUMERIC_RE, _EXPIRY_ISO_RE):
        match = regex.search(text)
        if match:
            return match.group(1)

    for match in _EXPIRY_TEXTUAL_RE.finditer(text):
        if match.group(2).lower() in MONTHS:
            return match.group(0)
    return None


def extract_name_guess(text: str) -> Optional[str]:
    """Premiers mots du texte (6 max) jusqu'au premier mot-outil d'étiquette."""
    kept: List[str] = []
    for token in text.split(" "):
        if len(kept) >= MAX_NAME_TOKENS:
            break
        cleaned = _NON_ALNUM_RE.sub("", token)
        if not cleaned:
            continue
        if cleaned.lower() in STOP_WORDS:
            break
        kept.append(cleaned)
    return " ".join(kept) or None


def extract_fields(raw_text: Optional[str]) -> ExtractedFields:
    """
    Extrait code de lot, date de péremption et nom probable d'un texte OCR.
    Les trois extractions sont indépendantes et peuvent chacune être absentes.
    """
    text = collapse_whitespace(raw_text)
    if not text:
        return ExtractedFields()

    fields = ExtractedFields(
        batch_code=extract_batch_code(text),
        expiry_date=extract_expiry_date(text),
        name_guess=extract_name_guess(text),
    )
    logger.debug(
        "extract_fields: lot=%r, péremption=%r, nom=%r",
        fields.batch_code,
        fields.expiry_date,
        fields.name_guess,
    )
    return fields
