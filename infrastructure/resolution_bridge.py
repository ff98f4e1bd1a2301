# infrastructure/resolution_bridge.py
"""
Serveur HTTP local exposant le moteur de résolution d'étiquettes.

- Polling HTTP simple (pas de WebSocket), écoute sur localhost uniquement
- Une requête = une résolution indépendante (catalogue fourni à chaque appel)
- Aucune écriture : la réponse peut contenir une proposition de création

Endpoints:
- GET  /status  : Diagnostic - vérifie que le serveur est actif
- POST /resolve : {catalog, strict?, qr_payload?, text?, image_base64?}
                  -> LabelResolution.to_dict()
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import functools
import io
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from aiohttp import web
from jsonschema import Draft7Validator
from PIL import Image, UnidentifiedImageError

from domain.label_models import CaptureSource, LabelResolution, RawCapture
from domain.label_pipeline import LabelResolutionEngine

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8765

RESOLVE_REQUEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "catalog": {
            "type": "array",
            "items": {"type": "object"},
        },
        "strict": {"type": "boolean"},
        "qr_payload": {"type": ["string", "null"]},
        "text": {"type": ["string", "null"]},
        "image_base64": {"type": ["string", "null"]},
    },
    "required": ["catalog"],
}
_REQUEST_VALIDATOR = Draft7Validator(RESOLVE_REQUEST_SCHEMA)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Accept",
}


class BadResolveRequest(ValueError):
    """Requête /resolve mal formée (réponse 400)."""


def decode_image(data: str) -> Image.Image:
    """Décode une image base64 (préfixe data-URL toléré)."""
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        raw = base64.b64decode(data, validate=True)
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (binascii.Error, ValueError) as exc:
        raise BadResolveRequest(f"image_base64 invalide: {exc}") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise BadResolveRequest(f"Image illisible: {exc}") from exc
    return image


def parse_resolve_request(body: Any) -> Dict[str, Any]:
    errors = sorted(_REQUEST_VALIDATOR.iter_errors(body), key=lambda e: list(e.path))
    if errors:
        first = errors[0]
        location = "/".join(str(part) for part in first.path) or "requête"
        raise BadResolveRequest(f"{location}: {first.message}")

    text = body.get("text")
    qr_payload = body.get("qr_payload")
    image_data = body.get("image_base64")

    if text is not None and (qr_payload or image_data):
        raise BadResolveRequest("Fournir 'text' OU 'qr_payload'/'image_base64', pas les deux.")
    if text is None and not (qr_payload or "").strip() and not image_data:
        raise BadResolveRequest("Une entrée est requise: 'text', 'qr_payload' ou 'image_base64'.")

    return {
        "catalog": body["catalog"],
        "strict": body.get("strict", False),
        "text": text,
        "qr_payload": qr_payload,
        "image": decode_image(image_data) if image_data else None,
    }


def run_resolution(engine: LabelResolutionEngine, request: Dict[str, Any]) -> LabelResolution:
    if request["text"] is not None:
        return engine.resolve_text(request["text"], request["catalog"], strict=request["strict"])

    capture = RawCapture(request["image"], CaptureSource.UPLOAD) if request["image"] is not None else None
    return engine.resolve_capture(
        capture,
        request["catalog"],
        strict=request["strict"],
        qr_payload=request["qr_payload"],
    )


@dataclass
class ResolutionBridge:
    """
    Pont HTTP entre un client local (navigateur, scanner) et le moteur.

    Utilisation :
        bridge = ResolutionBridge(engine_factory=lambda: LabelResolutionEngine(recognizer))
        bridge.start()  # Démarre le serveur en arrière-plan
        ...
        bridge.stop()   # Arrête le serveur proprement
    """

    engine_factory: Callable[[], LabelResolutionEngine]
    port: int = DEFAULT_PORT
    host: str = "localhost"

    def __post_init__(self) -> None:
        self._server_thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._runner: Optional[web.AppRunner] = None
        self._running = False
        self._started = threading.Event()

    def is_running(self) -> bool:
        """Retourne True si le serveur HTTP est actif."""
        return self._running

    # ------------------------------------------------------------------
    # Handlers HTTP
    # ------------------------------------------------------------------

    async def _handle_status(self, request: web.Request) -> web.Response:
        """GET /status - Diagnostic du serveur."""
        return web.json_response({
            "status": "ok",
            "service": "Label Resolution Bridge",
            "port": self.port,
        })

    async def _handle_resolve(self, request: web.Request) -> web.Response:
        """POST /resolve - Résout une étiquette (texte, QR ou image)."""
        try:
            body = await request.json()
        except json.JSONDecodeError as exc:
            logger.warning("Requête /resolve: JSON invalide (%s)", exc)
            return web.json_response({"error": f"JSON invalide: {exc}"}, status=400)

        try:
            parsed = parse_resolve_request(body)
        except BadResolveRequest as exc:
            logger.warning("Requête /resolve rejetée: %s", exc)
            return web.json_response({"error": str(exc)}, status=400)

        # Résolution bloquante (OCR) hors de la boucle événementielle
        loop = asyncio.get_running_loop()
        try:
            resolution = await loop.run_in_executor(
                None,
                functools.partial(run_resolution, self.engine_factory(), parsed),
            )
        except ValueError as exc:
            logger.warning("Requête /resolve invalide: %s", exc)
            return web.json_response({"error": str(exc)}, status=400)

        logger.info("Requête /resolve traitée: %s", resolution.result.kind)
        return web.json_response(resolution.to_dict())

    async def _handle_cors_preflight(self, request: web.Request) -> web.Response:
        """Gère les requêtes OPTIONS pour CORS."""
        return web.Response(status=204, headers=_CORS_HEADERS)

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler: Callable) -> web.StreamResponse:
        """Ajoute les headers CORS à toutes les réponses."""
        if request.method == "OPTIONS":
            return await self._handle_cors_preflight(request)

        response = await handler(request)
        response.headers.update(_CORS_HEADERS)
        return response

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_app(self) -> web.Application:
        """Crée l'application aiohttp avec les routes."""
        app = web.Application(middlewares=[self._cors_middleware])
        app.router.add_get("/status", self._handle_status)
        app.router.add_post("/resolve", self._handle_resolve)
        app.router.add_route("OPTIONS", "/resolve", self._handle_cors_preflight)
        return app

    async def _run_server(self) -> None:
        """Lance le serveur HTTP (appelé dans le thread dédié)."""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info("Serveur de résolution démarré sur http://%s:%d", self.host, self.port)
        self._running = True
        self._started.set()

        while self._running:
            await asyncio.sleep(0.5)

        await self._runner.cleanup()
        logger.info("Serveur de résolution arrêté")

    def _thread_target(self) -> None:
        """Point d'entrée du thread serveur."""
        try:
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            self._loop.run_until_complete(self._run_server())
        except OSError as exc:
            logger.error("Erreur dans le thread serveur HTTP: %s", exc, exc_info=True)
        finally:
            self._running = False
            self._started.set()
            if self._loop:
                self._loop.close()

    def start(self, wait: float = 3.0) -> None:
        """Démarre le serveur HTTP en arrière-plan."""
        if self._running:
            logger.warning("Serveur HTTP déjà en cours d'exécution")
            return

        self._started.clear()
        self._server_thread = threading.Thread(
            target=self._thread_target,
            daemon=True,
            name="LabelResolutionBridge",
        )
        self._server_thread.start()
        self._started.wait(timeout=wait)
        logger.info("Thread serveur de résolution lancé")

    def stop(self) -> None:
        """Arrête le serveur HTTP proprement."""
        if not self._running:
            return

        self._running = False

        if self._server_thread and self._server_thread.is_alive():
            self._server_thread.join(timeout=3.0)
            logger.info("Thread serveur de résolution terminé")
