# infrastructure/frame_sources.py

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence, Union

from PIL import Image

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """
    Flux d'images pour le scan continu (caméra, dossier, ...).
    read_frame() retourne None quand le flux est épuisé.
    """

    @abstractmethod
    def open(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def read_frame(self) -> Optional[Image.Image]:
        raise NotImplementedError

    @abstractmethod
    def release(self) -> None:
        raise NotImplementedError


class ImageSequenceFrameSource(FrameSource):
    """Rejoue une liste de fichiers image, une image par lecture."""

    def __init__(self, paths: Sequence[Union[str, Path]]) -> None:
        self._paths: List[Path] = [Path(p) for p in paths]
        self._index = 0
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    def open(self) -> None:
        missing = [str(p) for p in self._paths if not p.exists()]
        if missing:
            raise FileNotFoundError(f"Image(s) introuvable(s): {', '.join(missing)}")
        self._index = 0
        self._opened = True
        logger.info("Source d'images ouverte (%d fichier(s)).", len(self._paths))

    def read_frame(self) -> Optional[Image.Image]:
        if not self._opened:
            raise RuntimeError("Source d'images non ouverte.")
        if self._index >= len(self._paths):
            return None

        path = self._paths[self._index]
        self._index += 1
        with Image.open(path) as image:
            image.load()
            frame = image.copy()
        logger.debug("Image lue: %s (%dx%d)", path, frame.width, frame.height)
        return frame

    def release(self) -> None:
        if self._opened:
            logger.info("Source d'images libérée.")
        self._opened = False
