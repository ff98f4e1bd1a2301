# domain/label_models.py

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from PIL import Image

from domain.resolution_status import ResolutionIssue

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------
# Seuils heuristiques (surchargeables via Settings)
# --------------------------------------------------------------------

DEFAULT_LOW_CONFIDENCE = 40.0
DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_MIN_UNIQUE_SCORE = 2
DEFAULT_MIN_GAP = 2
DEFAULT_MIN_GAP_TOP_SCORE = 3

_NAME_TOKEN_RE = re.compile(r"[a-z0-9]+")
MIN_NAME_TOKEN_LENGTH = 3


@dataclass(frozen=True)
class ResolutionThresholds:
    """
    Seuils utilisés par le contrôleur de relecture et le rapprochement flou.

    - low_confidence      : confiance OCR sous laquelle on relance les variantes
    - max_attempts        : nombre maximal d'appels OCR par passe
    - min_unique_score    : score minimal d'un candidat unique
    - min_gap             : écart minimal entre les deux meilleurs scores
    - min_gap_top_score   : score minimal du meilleur candidat quand on s'appuie sur l'écart
    """
    low_confidence: float = DEFAULT_LOW_CONFIDENCE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    min_unique_score: int = DEFAULT_MIN_UNIQUE_SCORE
    min_gap: int = DEFAULT_MIN_GAP
    min_gap_top_score: int = DEFAULT_MIN_GAP_TOP_SCORE

    def __post_init__(self) -> None:
        if not 0 <= self.low_confidence <= 100:
            raise ValueError(f"low_confidence hors bornes [0, 100]: {self.low_confidence}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts doit être >= 1: {self.max_attempts}")
        if min(self.min_unique_score, self.min_gap, self.min_gap_top_score) < 1:
            raise ValueError("Les seuils de score doivent être >= 1.")


# --------------------------------------------------------------------
# Capture et variantes
# --------------------------------------------------------------------

class CaptureSource(Enum):
    CAMERA = "camera"
    UPLOAD = "upload"


@dataclass(frozen=True, eq=False)
class RawCapture:
    """Image capturée (caméra ou fichier), éphémère : une par scan."""
    image: Image.Image
    source: CaptureSource = CaptureSource.UPLOAD


@dataclass(frozen=True)
class VariantTransform:
    rotation: int = 0
    inverted: bool = False

    ALLOWED_ROTATIONS: ClassVar[Tuple[int, ...]] = (0, 90, 270)

    def __post_init__(self) -> None:
        if self.rotation not in self.ALLOWED_ROTATIONS:
            raise ValueError(f"Rotation non supportée: {self.rotation}")

    @property
    def is_identity(self) -> bool:
        return self.rotation == 0 and not self.inverted

    @property
    def variant_id(self) -> str:
        suffix = "-inv" if self.inverted else ""
        return f"rot{self.rotation}{suffix}"


@dataclass(frozen=True, eq=False)
class ImageVariant:
    image: Image.Image
    transform: VariantTransform

    @property
    def variant_id(self) -> str:
        return self.transform.variant_id


# --------------------------------------------------------------------
# OCR et champs extraits
# --------------------------------------------------------------------

ORIGINAL_VARIANT_ID = "original"


@dataclass(frozen=True)
class OcrAttempt:
    variant_id: str
    raw_text: str
    confidence: float
    engine: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"Confiance OCR hors bornes [0, 100]: {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "raw_text": self.raw_text,
            "confidence": self.confidence,
            "engine": self.engine,
        }


@dataclass(frozen=True)
class ExtractedFields:
    """Champs bruts (avant normalisation) extraits d'un texte OCR."""
    batch_code: Optional[str] = None
    expiry_date: Optional[str] = None
    name_guess: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.batch_code or self.expiry_date or self.name_guess)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_code": self.batch_code,
            "expiry_date": self.expiry_date,
            "name_guess": self.name_guess,
        }


@dataclass(frozen=True)
class NormalizedFields:
    batch_code: Optional[str] = None
    expiry_date_iso: Optional[str] = None
    expiry_date_display: Optional[str] = None

    @property
    def has_identifiers(self) -> bool:
        return bool(self.batch_code or self.expiry_date_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_code": self.batch_code,
            "expiry_date_iso": self.expiry_date_iso,
            "expiry_date_display": self.expiry_date_display,
        }


@dataclass(frozen=True)
class LabelReading:
    """Une tentative OCR accompagnée de son extraction et de sa normalisation."""
    attempt: OcrAttempt
    extracted: ExtractedFields
    normalized: NormalizedFields

    @property
    def confidence(self) -> float:
        return self.attempt.confidence

    @property
    def has_identifiers(self) -> bool:
        return self.normalized.has_identifiers

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt.to_dict(),
            "extracted": self.extracted.to_dict(),
            "normalized": self.normalized.to_dict(),
        }


# --------------------------------------------------------------------
# Catalogue
# --------------------------------------------------------------------

def name_tokens_of(name: str) -> FrozenSet[str]:
    """Mots significatifs d'un nom produit (minuscules, longueur >= 3)."""
    return frozenset(
        token
        for token in _NAME_TOKEN_RE.findall((name or "").lower())
        if len(token) >= MIN_NAME_TOKEN_LENGTH
    )


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    name: str
    name_tokens: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CatalogEntry":
        """
        Construit une entrée depuis un enregistrement {id, name}.
        Lève ValueError si l'identifiant est absent ou vide.
        """
        if not isinstance(record, dict):
            raise ValueError(f"Enregistrement catalogue invalide (non dict): {record!r}")

        raw_id = record.get("id")
        entry_id = str(raw_id).strip() if raw_id is not None else ""
        if not entry_id:
            raise ValueError(f"Enregistrement catalogue sans identifiant: {record!r}")

        name = str(record.get("name") or "").strip()
        return cls(id=entry_id, name=name, name_tokens=name_tokens_of(name))

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}


def build_catalog(records: Iterable[Any]) -> List[CatalogEntry]:
    """
    Convertit un instantané catalogue fourni par l'appelant.
    Les enregistrements inexploitables sont ignorés (avec avertissement).
    """
    entries: List[CatalogEntry] = []
    for index, record in enumerate(records or []):
        if isinstance(record, CatalogEntry):
            entries.append(record)
            continue
        try:
            entries.append(CatalogEntry.from_record(record))
        except ValueError as exc:
            logger.warning("Entrée catalogue %d ignorée: %s", index, exc)
    logger.debug("build_catalog: %d entrée(s) exploitables.", len(entries))
    return entries


# --------------------------------------------------------------------
# Code structuré (QR)
# --------------------------------------------------------------------

class PayloadFormat(Enum):
    JSON = "json"
    URL = "url"
    PREFIXED = "prefixed"
    OPAQUE = "opaque"


class CodeKind(Enum):
    """Famille d'un code scanné, d'après son préfixe."""
    PRODUCT = "product"
    ORDER = "order"
    SHIPMENT = "shipment"
    PALLET = "pallet"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class StructuredCode:
    payload_format: PayloadFormat
    id: Optional[str] = None
    name: Optional[str] = None
    batch: Optional[str] = None
    expiry_iso: Optional[str] = None
    expiry_display: Optional[str] = None
    code: Optional[str] = None
    # Routage de l'écran de scan (produit, commande, expédition, palette)
    kind: CodeKind = CodeKind.UNKNOWN

    @property
    def codes(self) -> Tuple[str, ...]:
        """Codes candidats au rapprochement exact, dans l'ordre de priorité."""
        seen: List[str] = []
        for value in (self.id, self.code, self.batch):
            if value and value not in seen:
                seen.append(value)
        return tuple(seen)

    @property
    def has_content(self) -> bool:
        return bool(self.codes or self.name or self.expiry_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payload_format": self.payload_format.value,
            "id": self.id,
            "name": self.name,
            "batch": self.batch,
            "expiry_iso": self.expiry_iso,
            "expiry_display": self.expiry_display,
            "code": self.code,
            "code_kind": self.kind.value,
        }


# --------------------------------------------------------------------
# Résultat de résolution (union étiquetée)
# --------------------------------------------------------------------

AMBIGUITY_COMPETING = "competing_candidates"
AMBIGUITY_DUPLICATE = "duplicate_of_primary"


@dataclass(frozen=True)
class Candidate:
    entry: CatalogEntry
    # None quand le candidat provient d'une égalité de code
    score: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"entry": self.entry.to_dict(), "score": self.score}


@dataclass(frozen=True)
class BestGuess:
    name_guess: Optional[str] = None
    batch_code: Optional[str] = None
    expiry_date_iso: Optional[str] = None
    expiry_date_display: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.name_guess or self.batch_code or self.expiry_date_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name_guess": self.name_guess,
            "batch_code": self.batch_code,
            "expiry_date_iso": self.expiry_date_iso,
            "expiry_date_display": self.expiry_date_display,
        }


@dataclass(frozen=True)
class Exact:
    entry: CatalogEntry
    kind: ClassVar[str] = "exact"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "entry": self.entry.to_dict()}


@dataclass(frozen=True)
class Fuzzy:
    entry: CatalogEntry
    score: int
    kind: ClassVar[str] = "fuzzy"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "entry": self.entry.to_dict(), "score": self.score}


@dataclass(frozen=True)
class Ambiguous:
    candidates: Tuple[Candidate, ...]
    reason: str = AMBIGUITY_COMPETING
    kind: ClassVar[str] = "ambiguous"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "reason": self.reason,
            "candidates": [candidate.to_dict() for candidate in self.candidates],
        }


@dataclass(frozen=True)
class Unresolved:
    best_guess: BestGuess = field(default_factory=BestGuess)
    kind: ClassVar[str] = "unresolved"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "best_guess": self.best_guess.to_dict()}


ResolutionResult = Union[Exact, Fuzzy, Ambiguous, Unresolved]


def resolved_entry(result: ResolutionResult) -> Optional[CatalogEntry]:
    """Entité retenue (Exact ou Fuzzy), None sinon."""
    if isinstance(result, (Exact, Fuzzy)):
        return result.entry
    if isinstance(result, (Ambiguous, Unresolved)):
        return None
    raise TypeError(f"Résultat de résolution inconnu: {result!r}")


def result_score(result: ResolutionResult) -> Optional[int]:
    if isinstance(result, Fuzzy):
        return result.score
    if isinstance(result, (Exact, Ambiguous, Unresolved)):
        return None
    raise TypeError(f"Résultat de résolution inconnu: {result!r}")


# --------------------------------------------------------------------
# Sorties moteur
# --------------------------------------------------------------------

class ResolutionSource(Enum):
    STRUCTURED = "structured"
    OCR = "ocr"
    TEXT = "text"


@dataclass(frozen=True)
class CreationProposal:
    """Proposition de création soumise à validation humaine (jamais écrite)."""
    suggested_id: str
    suggested_name: str
    suggested_expiry: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suggested_id": self.suggested_id,
            "suggested_name": self.suggested_name,
            "suggested_expiry": self.suggested_expiry,
        }


@dataclass(frozen=True)
class LabelResolution:
    result: ResolutionResult
    source: ResolutionSource
    raw_text: str = ""
    reading: Optional[LabelReading] = None
    structured: Optional[StructuredCode] = None
    attempts: Tuple[OcrAttempt, ...] = ()
    issues: Tuple[ResolutionIssue, ...] = ()
    proposal: Optional[CreationProposal] = None

    @property
    def entry(self) -> Optional[CatalogEntry]:
        return resolved_entry(self.result)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.to_dict(),
            "source": self.source.value,
            "raw_text": self.raw_text,
            "reading": self.reading.to_dict() if self.reading else None,
            "structured": self.structured.to_dict() if self.structured else None,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "issues": [issue.value for issue in self.issues],
            "proposal": self.proposal.to_dict() if self.proposal else None,
        }


@dataclass(frozen=True)
class MixedBatchContext:
    pallet_id: str
    primary: ResolutionResult
    secondary: ResolutionResult
    secondary_details: Optional[LabelResolution] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pallet_id": self.pallet_id,
            "primary": self.primary.to_dict(),
            "secondary": self.secondary.to_dict(),
            "secondary_details": (
                self.secondary_details.to_dict() if self.secondary_details else None
            ),
        }
