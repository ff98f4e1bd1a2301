from types import SimpleNamespace
from unittest import mock

import pytest
import pytesseract

from config.settings import Settings
from domain.ocr_provider import FallbackTextRecognizer, RecognitionUnavailable, clamp_confidence
from infrastructure.google_vision_ocr import GoogleVisionTextRecognizer
from infrastructure.ocr_factory import build_recognizer, build_text_recognizer
from infrastructure.tesseract_ocr import CHAR_WHITELIST, TesseractTextRecognizer, build_tesseract_config
from label_fakes import blank_image


def test_tesseract_config_restricts_charset():
    config = build_tesseract_config()

    assert "--psm 6" in config
    assert "--dpi 300" in config
    assert f"tessedit_char_whitelist={CHAR_WHITELIST}" in config
    assert "preserve_interword_spaces=1" in config


def test_tesseract_words_and_mean_confidence():
    data = {"text": ["", "LOT", " ", "A1-22"], "conf": ["-1", "90", "-1", 70.5]}

    with mock.patch("infrastructure.tesseract_ocr.pytesseract.image_to_data", return_value=data) as fake:
        recognized = TesseractTextRecognizer().recognize(blank_image())

    assert recognized.text == "LOT A1-22"
    assert recognized.confidence == pytest.approx(80.25)
    assert recognized.engine == "tesseract"
    assert fake.call_args.kwargs["output_type"] == pytesseract.Output.DICT


def test_tesseract_empty_page():
    data = {"text": ["", ""], "conf": ["-1", "-1"]}

    with mock.patch("infrastructure.tesseract_ocr.pytesseract.image_to_data", return_value=data):
        recognized = TesseractTextRecognizer().recognize(blank_image())

    assert recognized.text == ""
    assert recognized.confidence == 0.0


def test_missing_tesseract_binary_is_unavailable():
    with mock.patch(
        "infrastructure.tesseract_ocr.pytesseract.image_to_data",
        side_effect=pytesseract.TesseractNotFoundError(),
    ):
        with pytest.raises(RecognitionUnavailable):
            TesseractTextRecognizer().recognize(blank_image())


def _vision_response(text, page_confidences, error_message=""):
    return SimpleNamespace(
        error=SimpleNamespace(message=error_message),
        full_text_annotation=SimpleNamespace(
            text=text,
            pages=[SimpleNamespace(confidence=value) for value in page_confidences],
        ),
    )


def test_google_vision_text_and_confidence():
    client = mock.Mock()
    client.document_text_detection.return_value = _vision_response("PROD-00007\nGreek  Yogurt", [0.9, 0.7])

    recognized = GoogleVisionTextRecognizer(client=client).recognize(blank_image())

    assert recognized.text == "PROD-00007 Greek Yogurt"
    assert recognized.confidence == pytest.approx(80.0)
    assert recognized.engine == "google_vision"
    client.document_text_detection.assert_called_once()


def test_google_vision_error_is_unavailable():
    client = mock.Mock()
    client.document_text_detection.return_value = _vision_response("", [], error_message="quota dépassé")

    with pytest.raises(RecognitionUnavailable):
        GoogleVisionTextRecognizer(client=client).recognize(blank_image())


def test_google_vision_transport_failure_is_unavailable():
    client = mock.Mock()
    client.document_text_detection.side_effect = ConnectionError("réseau coupé")

    with pytest.raises(RecognitionUnavailable):
        GoogleVisionTextRecognizer(client=client).recognize(blank_image())


def test_factory_rejects_unknown_engine():
    with pytest.raises(ValueError):
        build_recognizer("easyocr", Settings())


def test_factory_builds_primary_and_fallback():
    settings = Settings(ocr_engine="tesseract", ocr_fallback_engine="google_vision")

    with mock.patch("infrastructure.google_vision_ocr.vision.ImageAnnotatorClient"):
        recognizer = build_text_recognizer(settings)

    assert isinstance(recognizer, FallbackTextRecognizer)
    assert isinstance(recognizer.primary, TesseractTextRecognizer)
    assert isinstance(recognizer.fallback, GoogleVisionTextRecognizer)
    assert recognizer.name == "tesseract+google_vision"


def test_factory_skips_engine_that_cannot_start():
    settings = Settings(ocr_engine="tesseract", ocr_fallback_engine="google_vision")

    with mock.patch(
        "infrastructure.google_vision_ocr.vision.ImageAnnotatorClient",
        side_effect=Exception("identifiants absents"),
    ):
        recognizer = build_text_recognizer(settings)

    assert isinstance(recognizer.primary, TesseractTextRecognizer)
    assert recognizer.fallback is None


def test_factory_returns_none_without_any_engine():
    settings = Settings(ocr_engine="google_vision")

    with mock.patch(
        "infrastructure.google_vision_ocr.vision.ImageAnnotatorClient",
        side_effect=Exception("identifiants absents"),
    ):
        assert build_text_recognizer(settings) is None


def test_fallback_used_once_when_primary_unavailable():
    primary = mock.Mock()
    primary.name = "tesseract"
    primary.recognize.side_effect = RecognitionUnavailable("binaire absent")
    client = mock.Mock()
    client.document_text_detection.return_value = _vision_response("LOT A1", [0.5])
    recognizer = FallbackTextRecognizer(primary, GoogleVisionTextRecognizer(client=client))

    recognized = recognizer.recognize(blank_image())

    assert recognized.text == "LOT A1"
    assert recognized.engine == "google_vision"
    assert client.document_text_detection.call_count == 1


@pytest.mark.parametrize("value, expected", [(float("nan"), 0.0), (float("inf"), 0.0), (-5, 0.0), (130, 100.0), (62.5, 62.5)])
def test_confidence_is_clamped(value, expected):
    assert clamp_confidence(value) == expected


def test_nan_confidence_from_engine_is_not_trusted():
    client = mock.Mock()
    client.document_text_detection.return_value = _vision_response("LOT A1", [float("nan")])

    recognized = GoogleVisionTextRecognizer(client=client).recognize(blank_image())

    assert recognized.confidence == 0.0
