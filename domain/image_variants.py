# domain/image_variants.py

"""
Préparation des images d'étiquettes avant OCR.

Chaque variante est une copie pivotée et/ou inversée de la capture, passée en
niveaux de gris puis binarisée avec un seuil adaptatif (moyenne de luminance
de l'image) : l'éclairage des étiquettes varie trop pour un seuil fixe.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from PIL import Image, ImageStat

from domain.label_models import ImageVariant, VariantTransform

logger = logging.getLogger(__name__)

THRESHOLD_RATIO = 0.95

VARIANT_ORDER: Sequence[VariantTransform] = (
    VariantTransform(rotation=0, inverted=False),
    VariantTransform(rotation=0, inverted=True),
    VariantTransform(rotation=90, inverted=False),
    VariantTransform(rotation=270, inverted=False),
)

# Rotation horaire, bornes du canevas recalculées (aucun rognage)
_CLOCKWISE_TRANSPOSE = {
    90: Image.Transpose.ROTATE_270,
    270: Image.Transpose.ROTATE_90,
}


def to_grayscale(image: Image.Image) -> Image.Image:
    """Luminance 0.299R + 0.587G + 0.114B (conversion 'L' de Pillow)."""
    if image.mode == "L":
        return image.copy()
    return image.convert("RGB").convert("L")


def adaptive_threshold(gray: Image.Image) -> float:
    mean = ImageStat.Stat(gray).mean[0]
    return min(255.0, max(0.0, mean * THRESHOLD_RATIO))


def binarize(image: Image.Image, inverted: bool = False) -> Image.Image:
    """Noir/blanc pur selon un seuil adaptatif propre à l'image."""
    if image.width == 0 or image.height == 0:
        raise ValueError("Image vide: binarisation impossible.")

    gray = to_grayscale(image)
    threshold = adaptive_threshold(gray)
    logger.debug(
        "binarize: %dx%d, seuil=%.1f, inversée=%s",
        gray.width,
        gray.height,
        threshold,
        inverted,
    )
    return gray.point(lambda value: 0 if (value < threshold) != inverted else 255)


def rotate_clockwise(image: Image.Image, rotation: int) -> Image.Image:
    if rotation == 0:
        return image.copy()
    try:
        return image.transpose(_CLOCKWISE_TRANSPOSE[rotation])
    except KeyError:
        raise ValueError(f"Rotation non supportée: {rotation}") from None


def apply_transform(image: Image.Image, transform: VariantTransform) -> ImageVariant:
    rotated = rotate_clockwise(image, transform.rotation)
    return ImageVariant(image=binarize(rotated, inverted=transform.inverted), transform=transform)


def generate_variants(image: Image.Image) -> List[ImageVariant]:
    """
    Construit les variantes OCR d'une capture, dans l'ordre :
    (0°), (0°, inversée), (90°), (270°).
    L'image d'origine n'est jamais modifiée.
    """
    variants = [apply_transform(image, transform) for transform in VARIANT_ORDER]
    logger.info(
        "Variantes OCR générées: %s",
        [variant.variant_id for variant in variants],
    )
    return variants
