# domain/mixed_batch.py

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, Iterable, Optional, Union

from PIL import Image

from domain.label_models import (
    AMBIGUITY_DUPLICATE,
    Ambiguous,
    Candidate,
    MixedBatchContext,
    RawCapture,
    ResolutionResult,
    resolved_entry,
    result_score,
)
from domain.label_pipeline import LabelResolutionEngine
from domain.resolution_status import ResolutionIssue

logger = logging.getLogger(__name__)

EngineFactory = Callable[[], LabelResolutionEngine]


class MixedBatchHandler:
    """
    Seconde résolution indépendante pour les palettes multi-produits.

    Chaque passe utilise un moteur neuf fourni par la fabrique : rien n'est
    partagé avec la passe principale.
    """

    def __init__(self, engine_factory: EngineFactory) -> None:
        self._engine_factory = engine_factory

    @staticmethod
    def requires_second_pass(primary: ResolutionResult, pallet_product_ids: Iterable[str]) -> bool:
        entry = resolved_entry(primary)
        if entry is None:
            return False
        primary_id = entry.id.upper()
        others = {
            str(product_id).strip().upper()
            for product_id in pallet_product_ids or []
            if product_id and str(product_id).strip()
        }
        others.discard(primary_id)
        if others:
            logger.info("Palette mixte: %d autre(s) produit(s) que %s.", len(others), entry.id)
        return bool(others)

    def resolve_secondary(
        self,
        primary: ResolutionResult,
        pallet_id: str,
        catalog: Iterable[Any],
        capture: Union[RawCapture, Image.Image, None] = None,
        qr_payload: Optional[str] = None,
        text: Optional[str] = None,
        strict: bool = False,
    ) -> MixedBatchContext:
        """
        Résout la seconde étiquette d'une palette mixte.
        Fournir soit un texte, soit une capture et/ou une charge utile QR.
        """
        if not pallet_id or not str(pallet_id).strip():
            raise ValueError("Identifiant de palette requis pour une palette mixte.")
        if text is not None and (capture is not None or qr_payload is not None):
            raise ValueError("Fournir un texte OU une capture/charge utile, pas les deux.")
        if text is None and capture is None and not (qr_payload or "").strip():
            raise ValueError("Aucune entrée pour la seconde passe.")

        engine = self._engine_factory()
        if text is not None:
            details = engine.resolve_text(text, catalog, strict=strict)
        else:
            details = engine.resolve_capture(capture, catalog, strict=strict, qr_payload=qr_payload)

        secondary = details.result
        primary_entry = resolved_entry(primary)
        secondary_entry = resolved_entry(secondary)

        if (
            primary_entry is not None
            and secondary_entry is not None
            and primary_entry.id.upper() == secondary_entry.id.upper()
        ):
            logger.warning(
                "Palette %s: la seconde étiquette désigne le même produit (%s), signalé comme ambigu.",
                pallet_id,
                primary_entry.id,
            )
            secondary = Ambiguous(
                candidates=(
                    Candidate(entry=primary_entry, score=result_score(primary)),
                    Candidate(entry=secondary_entry, score=result_score(details.result)),
                ),
                reason=AMBIGUITY_DUPLICATE,
            )
            details = dataclasses.replace(
                details,
                result=secondary,
                issues=details.issues + (ResolutionIssue.AMBIGUOUS_MATCH,),
            )

        return MixedBatchContext(
            pallet_id=str(pallet_id).strip(),
            primary=primary,
            secondary=secondary,
            secondary_details=details,
        )
