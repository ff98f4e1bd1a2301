# infrastructure/google_vision_ocr.py

from __future__ import annotations

import io
import logging
import os

from google.cloud import vision
from PIL import Image

from domain.field_extractor import collapse_whitespace
from domain.ocr_provider import RecognitionUnavailable, RecognizedText, TextRecognizer, clamp_confidence

logger = logging.getLogger(__name__)


def _png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class GoogleVisionTextRecognizer(TextRecognizer):
    """
    Moteur OCR basé sur Google Vision.

    Requiert :
    - la dépendance `google-cloud-vision`
    - une variable d'environnement GOOGLE_APPLICATION_CREDENTIALS pointant vers la clé service
    """

    name = "google_vision"

    def __init__(self, credentials_path: str | None = None, client=None) -> None:
        if credentials_path:
            os.environ.setdefault("GOOGLE_APPLICATION_CREDENTIALS", credentials_path)

        if client is not None:
            self._client = client
            return

        try:
            self._client = vision.ImageAnnotatorClient()
            logger.info("Client Google Vision OCR initialisé.")
        except Exception as exc:  # pragma: no cover - dépendance externe
            logger.error("Impossible d'initialiser Google Vision OCR: %s", exc, exc_info=True)
            raise RecognitionUnavailable(f"Initialisation Google Vision impossible: {exc}") from exc

    def recognize(self, image: Image.Image) -> RecognizedText:
        try:
            response = self._client.document_text_detection(image=vision.Image(content=_png_bytes(image)))
        except Exception as exc:
            logger.warning("Appel Google Vision échoué: %s", exc, exc_info=True)
            raise RecognitionUnavailable(f"Google Vision indisponible: {exc}") from exc

        if response.error.message:
            logger.warning("Google Vision a retourné une erreur: %s", response.error.message)
            raise RecognitionUnavailable(f"Google Vision: {response.error.message}")

        annotation = response.full_text_annotation
        text = collapse_whitespace(annotation.text)
        pages = list(annotation.pages)
        # Confiance Vision en [0, 1] par page, ramenée à l'échelle 0-100
        confidence = sum(page.confidence for page in pages) / len(pages) * 100 if pages else 0.0

        logger.debug("OCR Google Vision: %d caractère(s), confiance=%.1f.", len(text), confidence)
        return RecognizedText(text=text, confidence=clamp_confidence(confidence), engine=self.name)
