# infrastructure/tesseract_ocr.py

from __future__ import annotations

import logging
from typing import List, Optional

import pytesseract
from PIL import Image

from domain.field_extractor import collapse_whitespace
from domain.ocr_provider import RecognitionUnavailable, RecognizedText, TextRecognizer, clamp_confidence

logger = logging.getLogger(__name__)

CHAR_WHITELIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-/:"
PAGE_SEGMENTATION_MODE = 6
DPI = 300


def build_tesseract_config(whitelist: str = CHAR_WHITELIST) -> str:
    """Bloc de texte uniforme, espaces inter-mots conservés, 300 dpi."""
    return (
        f"--psm {PAGE_SEGMENTATION_MODE} --dpi {DPI} "
        f"-c tessedit_char_whitelist={whitelist} "
        "-c preserve_interword_spaces=1"
    )


class TesseractTextRecognizer(TextRecognizer):
    """
    Moteur OCR local basé sur Tesseract (via pytesseract).

    Requiert le binaire `tesseract` (PATH ou TESSERACT_CMD).
    La confiance est la moyenne des confiances mot à mot (les valeurs -1 de
    Tesseract, hors mots, sont ignorées).
    """

    name = "tesseract"

    def __init__(self, tesseract_cmd: Optional[str] = None, lang: str = "eng") -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
            logger.info("Binaire Tesseract configuré: %s", tesseract_cmd)
        self._lang = lang or "eng"
        self._config = build_tesseract_config()

    def recognize(self, image: Image.Image) -> RecognizedText:
        try:
            data = pytesseract.image_to_data(
                image,
                lang=self._lang,
                config=self._config,
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError, OSError) as exc:
            logger.warning("Tesseract indisponible: %s", exc)
            raise RecognitionUnavailable(f"Tesseract indisponible: {exc}") from exc

        words: List[str] = []
        confidences: List[float] = []
        for word, conf in zip(data.get("text", []), data.get("conf", [])):
            try:
                value = float(conf)
            except (TypeError, ValueError):
                continue
            if value < 0:
                continue
            if word and word.strip():
                words.append(word.strip())
                confidences.append(value)

        text = collapse_whitespace(" ".join(words))
        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        logger.debug("OCR Tesseract: %d mot(s), confiance=%.1f.", len(words), confidence)
        return RecognizedText(text=text, confidence=clamp_confidence(confidence), engine=self.name)
