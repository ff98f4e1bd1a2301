"""Moteurs OCR et sources d'images factices partagés par les tests."""

import threading

from PIL import Image

from domain.ocr_provider import RecognizedText, TextRecognizer
from infrastructure.frame_sources import FrameSource


def blank_image(width=40, height=20):
    image = Image.new("RGB", (width, height), "white")
    for x in range(5, 15):
        for y in range(5, 10):
            image.putpixel((x, y), (0, 0, 0))
    return image


class ScriptedRecognizer(TextRecognizer):
    """
    Rejoue une suite de réponses : tuple (texte, confiance) ou exception à lever.
    La dernière réponse est répétée une fois la suite épuisée.
    """

    name = "scripted"

    def __init__(self, *responses):
        self._responses = list(responses) or [("", 0.0)]
        self.calls = 0
        self.images = []

    def recognize(self, image):
        self.images.append(image)
        response = self._responses[min(self.calls, len(self._responses) - 1)]
        self.calls += 1
        if isinstance(response, BaseException):
            raise response
        text, confidence = response
        return RecognizedText(text=text, confidence=confidence, engine=self.name)


class BlockingRecognizer(TextRecognizer):
    """Bloque chaque reconnaissance jusqu'à ce que `gate` soit levé."""

    name = "blocking"

    def __init__(self, text="", confidence=90.0):
        self.entered = threading.Event()
        self.gate = threading.Event()
        self._text = text
        self._confidence = confidence

    def recognize(self, image):
        self.entered.set()
        self.gate.wait(timeout=5)
        return RecognizedText(text=self._text, confidence=self._confidence, engine=self.name)


class ListFrameSource(FrameSource):
    """Source d'images en mémoire ; frames=None => flux infini."""

    def __init__(self, frames=None, fail_on_read=None):
        self._frames = list(frames) if frames is not None else None
        self._fail_on_read = fail_on_read
        self.open_calls = 0
        self.release_calls = 0
        self.reads = 0

    def open(self):
        self.open_calls += 1

    def read_frame(self):
        self.reads += 1
        if self._fail_on_read is not None and self.reads >= self._fail_on_read:
            raise OSError("caméra déconnectée")
        if self._frames is None:
            return blank_image()
        if not self._frames:
            return None
        return self._frames.pop(0)

    def release(self):
        self.release_calls += 1
