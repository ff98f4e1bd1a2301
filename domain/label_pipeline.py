# domain/label_pipeline.py

"""
Façade du moteur de reconnaissance d'étiquettes.

Trois entrées possibles, une sortie commune (LabelResolution) :
- resolve_capture : image (+ éventuelle charge utile QR déjà décodée)
- resolve_payload : charge utile QR seule
- resolve_text    : texte saisi ou lu ailleurs

Aucune erreur de reconnaissance ne remonte à l'appelant : elles sont converties
en ResolutionIssue, accompagnées des données partielles disponibles.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Sequence, Union

from PIL import Image

from domain.entity_resolver import EntityResolver, ResolutionQuery, build_creation_proposal
from domain.field_extractor import collapse_whitespace, extract_fields
from domain.label_models import (
    Ambiguous,
    BestGuess,
    CatalogEntry,
    LabelReading,
    LabelResolution,
    RawCapture,
    ResolutionResult,
    ResolutionSource,
    ResolutionThresholds,
    StructuredCode,
    Unresolved,
    build_catalog,
)
from domain.label_normalizer import normalize_fields
from domain.ocr_provider import FallbackTextRecognizer, TextRecognizer
from domain.resolution_status import ResolutionIssue
from domain.retry_controller import capture_strategies, make_reader, run_recognition
from domain.structured_code import decode_structured_payload

logger = logging.getLogger(__name__)


class LabelResolutionEngine:
    """
    Un moteur par appelant ; aucun état n'est conservé entre deux résolutions.
    Le catalogue est fourni à chaque appel.
    """

    def __init__(
        self,
        recognizer: Optional[TextRecognizer] = None,
        thresholds: Optional[ResolutionThresholds] = None,
    ) -> None:
        # Toute erreur du moteur est convertie en RecognitionUnavailable
        if recognizer is not None and not isinstance(recognizer, FallbackTextRecognizer):
            recognizer = FallbackTextRecognizer(recognizer)
        self._recognizer = recognizer
        self._thresholds = thresholds or ResolutionThresholds()
        self._resolver = EntityResolver(self._thresholds)

    @property
    def thresholds(self) -> ResolutionThresholds:
        return self._thresholds

    # ------------------------------------------------------------------
    # Points d'entrée
    # ------------------------------------------------------------------

    def resolve_capture(
        self,
        capture: Union[RawCapture, Image.Image, None],
        catalog: Iterable[Any],
        strict: bool = False,
        qr_payload: Optional[str] = None,
    ) -> LabelResolution:
        """
        Résout une capture. Une charge utile QR exploitable court-circuite
        entièrement l'OCR ; sinon la capture passe par le contrôleur de relecture.
        """
        entries = build_catalog(catalog)

        structured: Optional[StructuredCode] = None
        if qr_payload is not None and qr_payload.strip():
            structured = decode_structured_payload(qr_payload)
            if structured.has_content:
                return self._resolve_structured(structured, qr_payload, entries, strict)
            logger.info("Charge utile QR sans contenu exploitable, passage à l'OCR.")

        image = capture.image if isinstance(capture, RawCapture) else capture
        if image is None:
            if structured is not None:
                return self._finish(
                    Unresolved(),
                    ResolutionSource.STRUCTURED,
                    entries,
                    raw_text=qr_payload.strip(),
                    structured=structured,
                    issues=[ResolutionIssue.NO_TEXT_DETECTED],
                )
            raise ValueError("Aucune image ni charge utile QR à résoudre.")

        if isinstance(capture, RawCapture):
            logger.info("Résolution d'une capture (%s).", capture.source.value)

        if self._recognizer is None:
            logger.error("Aucun moteur OCR configuré, reconnaissance impossible.")
            return self._finish(
                Unresolved(),
                ResolutionSource.OCR,
                entries,
                structured=structured,
                issues=[ResolutionIssue.RECOGNITION_UNAVAILABLE],
            )

        outcome = run_recognition(
            capture_strategies(image),
            make_reader(self._recognizer),
            self._thresholds,
        )
        issues: List[ResolutionIssue] = []
        if outcome.issue is not None:
            issues.append(outcome.issue)

        reading = outcome.reading
        attempts = tuple(r.attempt for r in outcome.attempts)
        return self._resolve_reading(
            reading,
            ResolutionSource.OCR,
            entries,
            strict,
            issues=issues,
            attempts=attempts,
            structured=structured,
        )

    def resolve_payload(
        self,
        payload: str,
        catalog: Iterable[Any],
        strict: bool = False,
    ) -> LabelResolution:
        """Résout une charge utile QR seule. Lève ValueError si elle est vide."""
        entries = build_catalog(catalog)
        structured = decode_structured_payload(payload)
        if not structured.has_content:
            logger.warning("Charge utile QR sans contenu exploitable: %r", payload)
            return self._finish(
                Unresolved(),
                ResolutionSource.STRUCTURED,
                entries,
                raw_text=payload.strip(),
                structured=structured,
                issues=[ResolutionIssue.NO_TEXT_DETECTED],
            )
        return self._resolve_structured(structured, payload, entries, strict)

    def resolve_text(
        self,
        text: Optional[str],
        catalog: Iterable[Any],
        strict: bool = False,
    ) -> LabelResolution:
        entries = build_catalog(catalog)
        raw_text = collapse_whitespace(text)
        extracted = extract_fields(raw_text)
        query = ResolutionQuery.from_fields(raw_text, extracted, normalize_fields(extracted))

        issues: List[ResolutionIssue] = []
        if not raw_text:
            issues.append(ResolutionIssue.NO_TEXT_DETECTED)

        result = self._resolver.resolve(query, entries, strict=strict)
        return self._finish(
            result,
            ResolutionSource.TEXT,
            entries,
            raw_text=raw_text,
            issues=issues,
            best_guess=query.best_guess,
        )

    # ------------------------------------------------------------------
    # Étapes internes
    # ------------------------------------------------------------------

    def _resolve_structured(
        self,
        structured: StructuredCode,
        payload: str,
        entries: Sequence[CatalogEntry],
        strict: bool,
    ) -> LabelResolution:
        logger.info("Résolution par code structuré (%s), OCR non sollicité.", structured.payload_format.value)
        query = ResolutionQuery.from_structured(structured)
        result = self._resolver.resolve(query, entries, strict=strict)
        return self._finish(
            result,
            ResolutionSource.STRUCTURED,
            entries,
            raw_text=payload.strip(),
            structured=structured,
            best_guess=query.best_guess,
        )

    def _resolve_reading(
        self,
        reading: Optional[LabelReading],
        source: ResolutionSource,
        entries: Sequence[CatalogEntry],
        strict: bool,
        issues: List[ResolutionIssue],
        attempts=(),
        structured: Optional[StructuredCode] = None,
    ) -> LabelResolution:
        raw_text = reading.attempt.raw_text if reading else ""

        if not raw_text:
            if ResolutionIssue.RECOGNITION_UNAVAILABLE not in issues:
                issues.append(ResolutionIssue.NO_TEXT_DETECTED)
        elif reading.confidence < self._thresholds.low_confidence and not reading.has_identifiers:
            logger.warning(
                "Lecture peu fiable (confiance %.1f) sans lot ni date.",
                reading.confidence,
            )
            issues.append(ResolutionIssue.LOW_CONFIDENCE)

        if reading is not None:
            query = ResolutionQuery.from_fields(raw_text, reading.extracted, reading.normalized)
        else:
            query = ResolutionQuery()

        result = self._resolver.resolve(query, entries, strict=strict)
        return self._finish(
            result,
            source,
            entries,
            raw_text=raw_text,
            reading=reading,
            structured=structured,
            attempts=attempts,
            issues=issues,
            best_guess=query.best_guess,
        )

    @staticmethod
    def _finish(
        result: ResolutionResult,
        source: ResolutionSource,
        entries: Sequence[CatalogEntry],
        raw_text: str = "",
        reading: Optional[LabelReading] = None,
        structured: Optional[StructuredCode] = None,
        attempts=(),
        issues: Optional[List[ResolutionIssue]] = None,
        best_guess: Optional[BestGuess] = None,
    ) -> LabelResolution:
        issues = list(issues or [])
        proposal = None

        if isinstance(result, Ambiguous):
            issues.append(ResolutionIssue.AMBIGUOUS_MATCH)
        elif isinstance(result, Unresolved):
            guess = best_guess or result.best_guess
            if not guess.is_empty or (structured is not None and structured.has_content):
                issues.append(ResolutionIssue.UNKNOWN_PRODUCT)
                proposal = build_creation_proposal(guess, entries, structured)

        resolution = LabelResolution(
            result=result,
            source=source,
            raw_text=raw_text,
            reading=reading,
            structured=structured,
            attempts=tuple(attempts),
            issues=tuple(issues),
            proposal=proposal,
        )
        logger.info(
            "Résolution %s (%s), problèmes: %s",
            result.kind,
            source.value,
            [issue.value for issue in resolution.issues] or "aucun",
        )
        return resolution
