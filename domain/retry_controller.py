# domain/retry_controller.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable, Iterable, Iterator, Optional, Tuple

from PIL import Image

from domain.field_extractor import collapse_whitespace, extract_fields
from domain.image_variants import VARIANT_ORDER, apply_transform
from domain.label_models import (
    ORIGINAL_VARIANT_ID,
    LabelReading,
    OcrAttempt,
    ResolutionThresholds,
    VariantTransform,
)
from domain.label_normalizer import normalize_fields
from domain.ocr_provider import RecognitionUnavailable, TextRecognizer, clamp_confidence
from domain.resolution_status import ResolutionIssue

logger = logging.getLogger(__name__)

# (image, variant_id) -> lecture complète (OCR + extraction + normalisation)
Reader = Callable[[Image.Image, str], LabelReading]


@dataclass(frozen=True)
class RecognitionStrategy:
    """Une image candidate, produite à la demande."""

    variant_id: str
    image_factory: Callable[[], Image.Image]


@dataclass(frozen=True)
class RecognitionOutcome:
    reading: Optional[LabelReading]
    attempts: Tuple[LabelReading, ...] = ()
    issue: Optional[ResolutionIssue] = None

    @property
    def succeeded(self) -> bool:
        return self.reading is not None and self.reading.has_identifiers


def _variant_image(image: Image.Image, transform: VariantTransform) -> Image.Image:
    return apply_transform(image, transform).image


def capture_strategies(image: Image.Image) -> Iterator[RecognitionStrategy]:
    """
    La capture telle quelle d'abord, puis les variantes non triviales
    (0° inversée, 90°, 270°), calculées seulement si on les atteint.
    """
    yield RecognitionStrategy(ORIGINAL_VARIANT_ID, lambda: image)
    for transform in VARIANT_ORDER:
        if transform.is_identity:
            continue
        yield RecognitionStrategy(transform.variant_id, partial(_variant_image, image, transform))


def make_reader(recognizer: TextRecognizer) -> Reader:
    def read(image: Image.Image, variant_id: str) -> LabelReading:
        recognized = recognizer.recognize(image)
        text = collapse_whitespace(recognized.text)
        attempt = OcrAttempt(
            variant_id=variant_id,
            raw_text=text,
            confidence=clamp_confidence(recognized.confidence),
            engine=recognized.engine or recognizer.name,
        )
        extracted = extract_fields(text)
        return LabelReading(attempt=attempt, extracted=extracted, normalized=normalize_fields(extracted))

    return read


def run_recognition(
    strategies: Iterable[RecognitionStrategy],
    read: Reader,
    thresholds: Optional[ResolutionThresholds] = None,
) -> RecognitionOutcome:
    """
    Essaie les stratégies dans l'ordre jusqu'au premier succès.

    - 1re tentative : succès si un lot ou une date est trouvé ET confiance >= seuil
    - tentatives suivantes : succès dès qu'un lot ou une date est trouvé
    - sinon : la tentative de meilleure confiance (la première en cas d'égalité)

    Au plus thresholds.max_attempts lectures. Un moteur indisponible met fin à
    la passe immédiatement.
    """
    limits = thresholds or ResolutionThresholds()
    readings = []
    best: Optional[LabelReading] = None

    for index, strategy in enumerate(strategies):
        if index >= limits.max_attempts:
            logger.debug("Nombre maximal de tentatives OCR atteint (%d).", limits.max_attempts)
            break

        try:
            reading = read(strategy.image_factory(), strategy.variant_id)
        except RecognitionUnavailable as exc:
            logger.error("Tentative OCR '%s' abandonnée: %s", strategy.variant_id, exc)
            return RecognitionOutcome(
                reading=best,
                attempts=tuple(readings),
                issue=ResolutionIssue.RECOGNITION_UNAVAILABLE,
            )

        readings.append(reading)
        logger.info(
            "Tentative OCR %d (%s): confiance=%.1f, lot=%s, péremption=%s",
            index + 1,
            strategy.variant_id,
            reading.confidence,
            reading.normalized.batch_code,
            reading.normalized.expiry_date_iso,
        )
        if best is None or reading.confidence > best.confidence:
            best = reading

        if index == 0:
            if reading.has_identifiers and reading.confidence >= limits.low_confidence:
                return RecognitionOutcome(reading=reading, attempts=tuple(readings))
            logger.info("Première lecture insuffisante, essai des variantes d'image.")
            continue

        if reading.has_identifiers:
            return RecognitionOutcome(reading=reading, attempts=tuple(readings))

    logger.info(
        "Aucune variante concluante, meilleure confiance retenue: %s",
        f"{best.attempt.variant_id} ({best.confidence:.1f})" if best else "aucune",
    )
    return RecognitionOutcome(reading=best, attempts=tuple(readings))
