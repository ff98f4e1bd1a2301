# domain/ocr_provider.py

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from PIL import Image

logger = logging.getLogger(__name__)


class RecognitionUnavailable(RuntimeError):
    """Le moteur OCR (et son éventuel secours) n'a pas pu traiter l'image."""


@dataclass(frozen=True)
class RecognizedText:
    """Texte brut (espaces compactés) et confiance 0-100 d'une reconnaissance."""

    text: str
    confidence: float
    engine: Optional[str] = None


def clamp_confidence(value: float) -> float:
    """Ramène la confiance dans [0, 100] ; NaN et infinis valent 0."""
    value = float(value)
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(100.0, value))


class TextRecognizer(ABC):
    """
    Interface commune pour les moteurs OCR.
    """

    name: str = "ocr"

    @abstractmethod
    def recognize(self, image: Image.Image) -> RecognizedText:
        """
        Reconnaît le texte d'une image.
        Doit lever RecognitionUnavailable si le moteur est indisponible.
        """
        raise NotImplementedError


class FallbackTextRecognizer(TextRecognizer):
    """
    Enchaîne un moteur principal et, s'il est configuré, un unique moteur de
    secours. Le secours n'est sollicité qu'une fois par reconnaissance.
    """

    def __init__(self, primary: TextRecognizer, fallback: Optional[TextRecognizer] = None) -> None:
        self._primary = primary
        self._fallback = fallback
        self.name = primary.name if fallback is None else f"{primary.name}+{fallback.name}"

    @property
    def primary(self) -> TextRecognizer:
        return self._primary

    @property
    def fallback(self) -> Optional[TextRecognizer]:
        return self._fallback

    def recognize(self, image: Image.Image) -> RecognizedText:
        try:
            return self._primary.recognize(image)
        except Exception as exc:
            if self._fallback is None:
                logger.error("OCR %s indisponible, aucun moteur de secours: %s", self._primary.name, exc)
                if isinstance(exc, RecognitionUnavailable):
                    raise
                raise RecognitionUnavailable(f"OCR {self._primary.name} indisponible: {exc}") from exc
            logger.warning(
                "OCR %s en échec (%s), bascule sur le moteur de secours %s.",
                self._primary.name,
                exc,
                self._fallback.name,
            )

        try:
            return self._fallback.recognize(image)
        except Exception as exc:
            logger.error("Moteur OCR de secours %s en échec: %s", self._fallback.name, exc)
            raise RecognitionUnavailable(
                f"OCR {self._primary.name} et secours {self._fallback.name} indisponibles: {exc}"
            ) from exc
