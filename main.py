# main.py

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, List, Optional, Sequence

from PIL import Image, UnidentifiedImageError

from config.log_config import setup_logging
from config.settings import load_settings
from domain.label_models import CaptureSource, RawCapture
from domain.label_pipeline import LabelResolutionEngine
from infrastructure.frame_sources import ImageSequenceFrameSource
from infrastructure.ocr_factory import build_text_recognizer
from infrastructure.resolution_bridge import ResolutionBridge
from infrastructure.scan_loop import ContinuousScanTask

logger = logging.getLogger(__name__)


def load_catalog(path: Path) -> List[Any]:
    """Instantané catalogue : fichier JSON contenant une liste de {id, name}."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise RuntimeError(f"Catalogue illisible ({path}): {exc}") from exc
    if isinstance(data, dict) and isinstance(data.get("products"), list):
        data = data["products"]
    if not isinstance(data, list):
        raise RuntimeError(f"Le catalogue {path} doit contenir une liste de produits.")
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconnaissance d'étiquettes produit et rapprochement catalogue.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Exemples:\n"
            "  python main.py --catalog produits.json --image etiquette.jpg\n"
            "  python main.py --catalog produits.json --qr '{\"id\":\"PROD-00010\"}'\n"
            "  python main.py --catalog produits.json --scan img1.jpg img2.jpg\n"
            "  python main.py --serve"
        ),
    )
    parser.add_argument("--catalog", "-c", type=Path, default=None,
                        help="Fichier JSON du catalogue (liste de {id, name})")
    parser.add_argument("--strict", action="store_true",
                        help="Correspondance exacte par code uniquement (pas de rapprochement flou)")
    parser.add_argument("--env-file", type=Path, default=Path(".env"),
                        help="Fichier .env optionnel")

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--image", "-i", type=Path, help="Image d'étiquette à résoudre")
    source.add_argument("--qr", help="Charge utile QR déjà décodée")
    source.add_argument("--text", "-t", help="Texte d'étiquette")
    source.add_argument("--scan", nargs="+", type=Path, metavar="IMAGE",
                        help="Scan continu sur une suite d'images")
    source.add_argument("--serve", action="store_true", help="Lance le pont HTTP local")
    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def run(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.env_file)
    except RuntimeError as exc:
        setup_logging()
        logger.critical("Impossible de charger la configuration (Settings). Erreur: %s", exc)
        return 1

    setup_logging(settings.log_level)
    logger.info("Démarrage du moteur de reconnaissance d'étiquettes.")

    catalog: List[Any] = []
    if args.catalog is not None:
        try:
            catalog = load_catalog(args.catalog)
        except RuntimeError as exc:
            logger.critical("%s", exc)
            return 1
    elif not args.serve:
        logger.warning("Aucun catalogue fourni : seule une proposition de création est possible.")

    # Texte et QR n'ont pas besoin d'OCR
    needs_ocr = args.image is not None or args.scan is not None or args.serve
    recognizer = build_text_recognizer(settings) if needs_ocr else None
    engine = LabelResolutionEngine(recognizer, settings.thresholds())

    if args.text is not None:
        _print_json(engine.resolve_text(args.text, catalog, strict=args.strict).to_dict())
        return 0

    if args.qr is not None:
        try:
            resolution = engine.resolve_payload(args.qr, catalog, strict=args.strict)
        except ValueError as exc:
            logger.error("Charge utile QR invalide: %s", exc)
            return 2
        _print_json(resolution.to_dict())
        return 0

    if args.image is not None:
        try:
            with Image.open(args.image) as image:
                image.load()
                capture = RawCapture(image.copy(), CaptureSource.UPLOAD)
        except (OSError, UnidentifiedImageError) as exc:
            logger.error("Image illisible (%s): %s", args.image, exc)
            return 2
        _print_json(engine.resolve_capture(capture, catalog, strict=args.strict).to_dict())
        return 0

    if args.scan is not None:
        task = ContinuousScanTask(
            ImageSequenceFrameSource(args.scan),
            engine,
            catalog,
            strict=args.strict,
            interval_ms=settings.scan_interval_ms,
            stop_on_match=True,
        )
        with task:
            task.join()
        if task.error is not None:
            logger.error("Scan interrompu: %s", task.error)
            return 1
        _print_json([resolution.to_dict() for resolution in task.results])
        return 0

    bridge = ResolutionBridge(
        engine_factory=lambda: LabelResolutionEngine(recognizer, settings.thresholds()),
        port=settings.bridge_port,
    )
    return _serve(bridge)


def _serve(bridge: ResolutionBridge) -> int:
    bridge.start()
    if not bridge.is_running():
        logger.critical("Le pont HTTP n'a pas pu démarrer (port %d).", bridge.port)
        return 1
    try:
        while bridge.is_running():
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.warning("Interruption clavier - fermeture.")
    finally:
        bridge.stop()
    return 0


def main() -> None:
    """
    Point d'entrée principal de l'application.

    - Charge la configuration (Settings) et initialise le logging
    - Construit la chaîne OCR (si nécessaire) et le moteur de résolution
    - Résout l'entrée demandée et imprime le résultat JSON sur stdout
    """
    sys.exit(run())


if __name__ == "__main__":
    main()
