# domain/entity_resolver.py

"""
Rapprochement d'une étiquette lue avec l'instantané catalogue.

Ordre de décision (privilégie la précision : un "aucun résultat" vaut mieux
qu'un faux positif) :
1. égalité de code (insensible à la casse) avec un identifiant catalogue => Exact
2. hors mode strict, score = nombre de mots significatifs partagés avec le nom
3. Fuzzy uniquement si un seul candidat atteint le score minimal, ou si
   l'écart avec le second est suffisant et le meilleur score assez haut
4. sinon Ambiguous (au moins un score > 0) ou Unresolved
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from domain.field_extractor import extract_fields, find_product_codes, significant_words
from domain.label_models import (
    Ambiguous,
    BestGuess,
    Candidate,
    CatalogEntry,
    CreationProposal,
    Exact,
    ExtractedFields,
    Fuzzy,
    NormalizedFields,
    ResolutionResult,
    ResolutionThresholds,
    StructuredCode,
    Unresolved,
    build_catalog,
)
from domain.label_normalizer import clean_code, normalize_fields

logger = logging.getLogger(__name__)

PRODUCT_ID_PREFIX = "PROD-"
_SEQUENTIAL_ID_RE = re.compile(r"^PROD-(\d+)$", re.IGNORECASE)


@dataclass(frozen=True)
class ResolutionQuery:
    """Ce que l'on cherche : codes candidats, texte libre, meilleure estimation."""

    codes: Tuple[str, ...] = ()
    text: str = ""
    best_guess: BestGuess = field(default_factory=BestGuess)

    @classmethod
    def from_fields(
        cls,
        raw_text: str,
        extracted: ExtractedFields,
        normalized: NormalizedFields,
    ) -> "ResolutionQuery":
        codes: List[str] = []
        for code in (clean_code(extracted.batch_code), normalized.batch_code, *find_product_codes(raw_text)):
            if code and code not in codes:
                codes.append(code)

        return cls(
            codes=tuple(codes),
            text=raw_text or "",
            best_guess=BestGuess(
                name_guess=extracted.name_guess,
                batch_code=normalized.batch_code,
                expiry_date_iso=normalized.expiry_date_iso,
                expiry_date_display=normalized.expiry_date_display,
            ),
        )

    @classmethod
    def from_text(cls, raw_text: str) -> "ResolutionQuery":
        extracted = extract_fields(raw_text)
        return cls.from_fields(raw_text, extracted, normalize_fields(extracted))

    @classmethod
    def from_structured(cls, code: StructuredCode) -> "ResolutionQuery":
        return cls(
            codes=code.codes,
            text=code.name or "",
            best_guess=BestGuess(
                name_guess=code.name,
                batch_code=code.batch,
                expiry_date_iso=code.expiry_iso,
                expiry_date_display=code.expiry_display,
            ),
        )


class EntityResolver:
    """
    Résout une requête d'étiquette contre un catalogue.
    Fonction pure de ses entrées : aucun état conservé entre deux appels.
    """

    def __init__(self, thresholds: Optional[ResolutionThresholds] = None) -> None:
        self._thresholds = thresholds or ResolutionThresholds()

    @property
    def thresholds(self) -> ResolutionThresholds:
        return self._thresholds

    def resolve(
        self,
        query: ResolutionQuery,
        catalog: Sequence[CatalogEntry],
        strict: bool = False,
    ) -> ResolutionResult:
        exact = self.match_exact(query.codes, catalog)
        if exact is not None:
            logger.info("Correspondance exacte par code: %s", exact.id)
            return Exact(entry=exact)

        if strict:
            logger.info("Mode strict : aucun code reconnu, pas de rapprochement flou.")
            return Unresolved(best_guess=query.best_guess)

        candidates = self.score_candidates(query.text, catalog)
        return self._select(candidates, query.best_guess)

    # ------------------------------------------------------------------
    # Étapes
    # ------------------------------------------------------------------

    @staticmethod
    def match_exact(codes: Iterable[str], catalog: Sequence[CatalogEntry]) -> Optional[CatalogEntry]:
        by_id: Dict[str, CatalogEntry] = {}
        for entry in catalog:
            by_id.setdefault(entry.id.upper(), entry)

        for code in codes:
            entry = by_id.get((code or "").strip().upper())
            if entry is not None:
                return entry
        return None

    @staticmethod
    def score_candidates(text: str, catalog: Sequence[CatalogEntry]) -> List[Candidate]:
        words = set(significant_words(text))
        if not words:
            return []

        scored = [
            Candidate(entry=entry, score=len(words & entry.name_tokens))
            for entry in catalog
        ]
        # Tri stable : à score égal, l'ordre du catalogue est conservé
        ranked = sorted((c for c in scored if c.score), key=lambda c: c.score, reverse=True)
        logger.debug(
            "Scores flous: %s",
            [(c.entry.id, c.score) for c in ranked],
        )
        return ranked

    def _select(self, candidates: List[Candidate], best_guess: BestGuess) -> ResolutionResult:
        if not candidates:
            logger.info("Aucun candidat catalogue pour ce texte.")
            return Unresolved(best_guess=best_guess)

        t = self._thresholds
        top = candidates[0]
        second_score = candidates[1].score if len(candidates) > 1 else 0
        above_minimum = [c for c in candidates if c.score >= t.min_unique_score]

        if len(above_minimum) == 1:
            logger.info("Correspondance floue (candidat unique): %s score=%d", top.entry.id, top.score)
            return Fuzzy(entry=top.entry, score=top.score)

        if top.score - second_score >= t.min_gap and top.score >= t.min_gap_top_score:
            logger.info(
                "Correspondance floue (écart %d): %s score=%d",
                top.score - second_score,
                top.entry.id,
                top.score,
            )
            return Fuzzy(entry=top.entry, score=top.score)

        logger.info("Correspondance ambiguë entre %d candidat(s).", len(candidates))
        return Ambiguous(candidates=tuple(candidates))


def resolve_text(
    text: str,
    catalog: Iterable[Any],
    strict: bool = False,
    thresholds: Optional[ResolutionThresholds] = None,
) -> ResolutionResult:
    """Raccourci : extraction + normalisation + résolution d'un texte OCR."""
    return EntityResolver(thresholds).resolve(
        ResolutionQuery.from_text(text),
        build_catalog(catalog),
        strict=strict,
    )


# ---------------------------------------------------------------------------
# Proposition de création
# ---------------------------------------------------------------------------

def next_product_id(catalog: Sequence[CatalogEntry]) -> str:
    """Identifiant séquentiel suivant (PROD-00001, PROD-00002, ...)."""
    highest = 0
    for entry in catalog:
        match = _SEQUENTIAL_ID_RE.match(entry.id)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{PRODUCT_ID_PREFIX}{highest + 1:05d}"


def build_creation_proposal(
    best_guess: BestGuess,
    catalog: Sequence[CatalogEntry],
    structured: Optional[StructuredCode] = None,
) -> Optional[CreationProposal]:
    """
    Prépare une proposition de création pour validation humaine.
    Retourne None si rien ne permet de nommer le produit.
    """
    name = best_guess.name_guess or (structured.name if structured else None) or best_guess.batch_code
    if not name:
        logger.info("Pas de proposition de création : aucun nom exploitable.")
        return None

    known_ids = {entry.id.upper() for entry in catalog}
    if structured and structured.id and structured.id.upper() not in known_ids:
        suggested_id = structured.id
    else:
        suggested_id = next_product_id(catalog)

    proposal = CreationProposal(
        suggested_id=suggested_id,
        suggested_name=name,
        suggested_expiry=best_guess.expiry_date_iso,
    )
    logger.info("Proposition de création: %s (%s)", proposal.suggested_id, proposal.suggested_name)
    return proposal
