# infrastructure/scan_loop.py
"""
Scan caméra continu.

Tâche explicite start/stop, exécutée dans un thread dédié :
- un tick toutes les `interval_ms` (horloge monotone)
- au plus une reconnaissance en cours : un tick qui tomberait pendant une
  reconnaissance est sauté (et compté)
- la source d'images est libérée une seule fois, sur toutes les sorties
  (stop explicite, sortie de contexte, correspondance trouvée, erreur)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Iterable, List, Optional

from domain.label_models import CaptureSource, LabelResolution, RawCapture
from domain.label_pipeline import LabelResolutionEngine
from infrastructure.frame_sources import FrameSource

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 500


class ContinuousScanTask:
    """
    Utilisation :
        with ContinuousScanTask(source, engine, catalog, stop_on_match=True) as task:
            task.join(timeout=10)
        print(task.results)
    """

    def __init__(
        self,
        source: FrameSource,
        engine: LabelResolutionEngine,
        catalog: Iterable[Any],
        strict: bool = False,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        on_result: Optional[Callable[[LabelResolution], None]] = None,
        stop_on_match: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms doit être > 0: {interval_ms}")

        self._source = source
        self._engine = engine
        self._catalog = list(catalog)
        self._strict = strict
        self._interval = interval_ms / 1000.0
        self._on_result = on_result
        self._stop_on_match = stop_on_match
        self._clock = clock

        self._stop_event = threading.Event()
        self._in_flight = threading.Lock()
        self._release_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._opened = False
        self._released = False

        self._results: List[LabelResolution] = []
        self._skipped_ticks = 0
        self._error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # État
    # ------------------------------------------------------------------

    @property
    def results(self) -> List[LabelResolution]:
        return list(self._results)

    @property
    def skipped_ticks(self) -> int:
        return self._skipped_ticks

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def released(self) -> bool:
        return self._released

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Tâche de scan déjà démarrée (une tâche ne se relance pas).")
        if self._stop_event.is_set() or self._released:
            raise RuntimeError("Tâche de scan déjà arrêtée, source libérée.")

        self._thread = threading.Thread(target=self._run, daemon=True, name="ContinuousLabelScan")
        self._thread.start()
        logger.info("Scan continu démarré (intervalle %d ms).", int(self._interval * 1000))

    def stop(self, timeout: float = 3.0) -> None:
        """Arrête le scan ; une reconnaissance en cours est ignorée."""
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        if self._thread is None:
            self._release_source()
        logger.info("Scan continu arrêté (%d résultat(s), %d tick(s) sautés).", len(self._results), self._skipped_ticks)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def trigger(self) -> Optional[LabelResolution]:
        """
        Tick immédiat, hors planification.
        Retourne None si une reconnaissance est déjà en cours (tick sauté).
        """
        if not self._opened or self._stop_event.is_set():
            raise RuntimeError("Scan continu inactif.")
        return self._tick()

    def __enter__(self) -> "ContinuousScanTask":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Boucle
    # ------------------------------------------------------------------

    def _run(self) -> None:
        try:
            self._source.open()
            self._opened = True
            next_tick = self._clock()

            while not self._stop_event.is_set():
                self._tick()
                if self._stop_event.is_set():
                    break

                next_tick += self._interval
                now = self._clock()
                if now > next_tick:
                    missed = int((now - next_tick) // self._interval) + 1
                    self._skipped_ticks += missed
                    next_tick += missed * self._interval
                    logger.debug("Reconnaissance plus longue que l'intervalle: %d tick(s) sauté(s).", missed)
                self._stop_event.wait(max(0.0, next_tick - now))
        except Exception as exc:
            logger.error("Scan continu interrompu par une erreur: %s", exc, exc_info=True)
            self._error = exc
        finally:
            self._stop_event.set()
            self._release_source()

    def _tick(self) -> Optional[LabelResolution]:
        if not self._in_flight.acquire(blocking=False):
            self._skipped_ticks += 1
            logger.debug("Reconnaissance en cours, tick sauté.")
            return None

        try:
            frame = self._source.read_frame()
            if frame is None:
                logger.info("Source d'images épuisée, fin du scan.")
                self._stop_event.set()
                return None
            resolution = self._engine.resolve_capture(
                RawCapture(frame, CaptureSource.CAMERA),
                self._catalog,
                strict=self._strict,
            )
        finally:
            self._in_flight.release()

        if self._stop_event.is_set():
            logger.debug("Scan arrêté pendant la reconnaissance, résultat ignoré.")
            return None

        self._results.append(resolution)
        if self._on_result is not None:
            self._on_result(resolution)

        if self._stop_on_match and resolution.entry is not None:
            logger.info("Produit reconnu (%s), arrêt du scan.", resolution.entry.id)
            self._stop_event.set()
        return resolution

    def _release_source(self) -> None:
        with self._release_lock:
            if self._released:
                return
            self._released = True
        try:
            self._source.release()
        except Exception as exc:
            logger.warning("Libération de la source d'images en échec: %s", exc)
