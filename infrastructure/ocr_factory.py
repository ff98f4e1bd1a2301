# infrastructure/ocr_factory.py

from __future__ import annotations

import logging
from typing import Optional

from config.settings import Settings
from domain.ocr_provider import FallbackTextRecognizer, RecognitionUnavailable, TextRecognizer

logger = logging.getLogger(__name__)


def build_recognizer(engine: str, settings: Settings) -> TextRecognizer:
    """Instancie un moteur OCR par son nom (tesseract | google_vision)."""
    if engine == "tesseract":
        from infrastructure.tesseract_ocr import TesseractTextRecognizer

        return TesseractTextRecognizer(tesseract_cmd=settings.tesseract_cmd, lang=settings.tesseract_lang)
    if engine == "google_vision":
        from infrastructure.google_vision_ocr import GoogleVisionTextRecognizer

        return GoogleVisionTextRecognizer(credentials_path=settings.google_credentials_path)
    raise ValueError(f"Moteur OCR inconnu: {engine!r}")


def build_text_recognizer(settings: Settings) -> Optional[TextRecognizer]:
    """
    Construit la chaîne OCR : moteur principal + secours optionnel.

    Un moteur qui ne peut pas s'initialiser est journalisé et écarté ;
    si aucun n'est disponible, retourne None (le moteur de résolution
    signalera alors RECOGNITION_UNAVAILABLE).
    """
    recognizers = []
    for engine in (settings.ocr_engine, settings.ocr_fallback_engine):
        if not engine:
            continue
        try:
            recognizers.append(build_recognizer(engine, settings))
            logger.info("Moteur OCR '%s' initialisé.", engine)
        except RecognitionUnavailable as exc:
            logger.error("Impossible d'initialiser le moteur OCR '%s': %s", engine, exc)

    if not recognizers:
        logger.critical("Aucun moteur OCR disponible.")
        return None

    primary = recognizers[0]
    fallback = recognizers[1] if len(recognizers) > 1 else None
    logger.debug("Chaîne OCR: %s", primary.name if fallback is None else f"{primary.name} -> {fallback.name}")
    return FallbackTextRecognizer(primary, fallback)
