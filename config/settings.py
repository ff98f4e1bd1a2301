# config/settings.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar

from domain.label_models import (
    DEFAULT_LOW_CONFIDENCE,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MIN_GAP,
    DEFAULT_MIN_GAP_TOP_SCORE,
    DEFAULT_MIN_UNIQUE_SCORE,
    ResolutionThresholds,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

OCR_ENGINES = ("tesseract", "google_vision")
DEFAULT_SCAN_INTERVAL_MS = 500
DEFAULT_BRIDGE_PORT = 8765


def _load_dotenv_if_present(env_file: str | Path = ".env") -> None:
    """
    Charge un fichier `.env` local si présent et injecte les variables
    manquantes dans l'environnement process.

    - ignore les lignes vides ou commentées
    - ne surcharge jamais une variable déjà définie dans l'environnement
    """
    env_path = Path(env_file)
    logger.debug("Recherche d'un fichier .env local à charger: %s", env_path)

    if not env_path.exists():
        logger.info("Aucun fichier .env trouvé à %s, passage en mode variables système.", env_path)
        return

    try:
        for line_no, raw_line in enumerate(env_path.read_text(encoding="utf-8").splitlines(), start=1):
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")

            if not key:
                logger.warning("Ligne %d du .env ignorée (clé vide).", line_no)
                continue

            if os.getenv(key) is None:
                os.environ[key] = value
                logger.debug("Variable %s chargée depuis .env.", key)

        logger.info("Chargement du fichier .env terminé.")
    except OSError as exc:
        logger.exception("Echec du chargement du fichier .env: %s", exc)
        raise RuntimeError(f"Erreur lors du chargement du fichier .env: {exc}") from exc


@dataclass
class Settings:
    """
    Configuration applicative centrale.

    - ocr_engine            : moteur OCR principal (tesseract | google_vision)
    - ocr_fallback_engine   : moteur de secours optionnel, sollicité une fois par lecture
    - low_confidence ...    : seuils heuristiques de relecture et de rapprochement
    - scan_interval_ms      : période du scan caméra continu
    - bridge_port           : port du pont HTTP local
    """
    ocr_engine: str = "tesseract"
    ocr_fallback_engine: Optional[str] = None

    tesseract_cmd: Optional[str] = None
    tesseract_lang: str = "eng"
    google_credentials_path: Optional[str] = None

    low_confidence: float = DEFAULT_LOW_CONFIDENCE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    fuzzy_min_score: int = DEFAULT_MIN_UNIQUE_SCORE
    fuzzy_min_gap: int = DEFAULT_MIN_GAP
    fuzzy_gap_top_score: int = DEFAULT_MIN_GAP_TOP_SCORE

    scan_interval_ms: int = DEFAULT_SCAN_INTERVAL_MS
    bridge_port: int = DEFAULT_BRIDGE_PORT
    log_level: str = "INFO"

    def thresholds(self) -> ResolutionThresholds:
        return ResolutionThresholds(
            low_confidence=self.low_confidence,
            max_attempts=self.max_attempts,
            min_unique_score=self.fuzzy_min_score,
            min_gap=self.fuzzy_min_gap,
            min_gap_top_score=self.fuzzy_gap_top_score,
        )


# ---------------------------------------------------------------------------
# Lecture des variables
# ---------------------------------------------------------------------------

def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return default
    if not raw.strip():
        logger.warning("%s est défini mais vide, valeur par défaut utilisée (%r).", name, default)
        return default
    return raw.strip()


def _env_number(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = _env_str(name, None)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        logger.error("Valeur invalide pour %s: %r", name, raw)
        raise RuntimeError(f"{name} doit être un nombre ({cast.__name__}), reçu {raw!r}.") from exc


def _env_engine(name: str, default: Optional[str]) -> Optional[str]:
    value = _env_str(name, default)
    if value is None:
        return None
    engine = value.lower()
    if engine not in OCR_ENGINES:
        logger.error("Moteur OCR inconnu pour %s: %r", name, value)
        raise RuntimeError(f"{name} doit valoir l'un de {', '.join(OCR_ENGINES)} (reçu {value!r}).")
    return engine


def load_settings(env_file: str | Path = ".env") -> Settings:
    """
    Charge la configuration à partir des variables d'environnement.

    Variables prises en compte :
    - LABEL_OCR_ENGINE, LABEL_OCR_FALLBACK_ENGINE
    - TESSERACT_CMD, TESSERACT_LANG, GOOGLE_APPLICATION_CREDENTIALS
    - LABEL_LOW_CONFIDENCE, LABEL_MAX_ATTEMPTS
    - LABEL_FUZZY_MIN_SCORE, LABEL_FUZZY_MIN_GAP, LABEL_FUZZY_GAP_TOP_SCORE
    - LABEL_SCAN_INTERVAL_MS, LABEL_BRIDGE_PORT, LABEL_LOG_LEVEL

    Lève RuntimeError en cas de valeur invalide et loggue en détail l'erreur.
    """
    logger.debug("Chargement des Settings depuis les variables d'environnement.")
    _load_dotenv_if_present(env_file)

    try:
        settings = Settings(
            ocr_engine=_env_engine("LABEL_OCR_ENGINE", "tesseract"),
            ocr_fallback_engine=_env_engine("LABEL_OCR_FALLBACK_ENGINE", None),
            tesseract_cmd=_env_str("TESSERACT_CMD", None),
            tesseract_lang=_env_str("TESSERACT_LANG", "eng"),
            google_credentials_path=_env_str("GOOGLE_APPLICATION_CREDENTIALS", None),
            low_confidence=_env_number("LABEL_LOW_CONFIDENCE", DEFAULT_LOW_CONFIDENCE, float),
            max_attempts=_env_number("LABEL_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS, int),
            fuzzy_min_score=_env_number("LABEL_FUZZY_MIN_SCORE", DEFAULT_MIN_UNIQUE_SCORE, int),
            fuzzy_min_gap=_env_number("LABEL_FUZZY_MIN_GAP", DEFAULT_MIN_GAP, int),
            fuzzy_gap_top_score=_env_number("LABEL_FUZZY_GAP_TOP_SCORE", DEFAULT_MIN_GAP_TOP_SCORE, int),
            scan_interval_ms=_env_number("LABEL_SCAN_INTERVAL_MS", DEFAULT_SCAN_INTERVAL_MS, int),
            bridge_port=_env_number("LABEL_BRIDGE_PORT", DEFAULT_BRIDGE_PORT, int),
            log_level=(_env_str("LABEL_LOG_LEVEL", "INFO") or "INFO").upper(),
        )

        if settings.ocr_fallback_engine == settings.ocr_engine:
            logger.warning("Moteur de secours identique au principal (%s), secours désactivé.", settings.ocr_engine)
            settings.ocr_fallback_engine = None
        if settings.scan_interval_ms <= 0:
            raise RuntimeError(f"LABEL_SCAN_INTERVAL_MS doit être > 0 (reçu {settings.scan_interval_ms}).")
        if not 0 < settings.bridge_port < 65536:
            raise RuntimeError(f"LABEL_BRIDGE_PORT hors bornes: {settings.bridge_port}.")

        # Validation des seuils par le modèle de domaine
        settings.thresholds()
    except ValueError as exc:
        logger.error("Seuils de résolution invalides: %s", exc)
        raise RuntimeError(f"Seuils de résolution invalides: {exc}") from exc
    except RuntimeError as exc:
        logger.error("Configuration invalide: %s", exc)
        raise

    logger.info(
        "Settings chargés avec succès (OCR='%s', secours=%s, seuil confiance=%.0f, tentatives=%d).",
        settings.ocr_engine,
        settings.ocr_fallback_engine or "aucun",
        settings.low_confidence,
        settings.max_attempts,
    )
    return settings
