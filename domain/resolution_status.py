# domain/resolution_status.py
from __future__ import annotations

from enum import Enum


class ResolutionIssue(str, Enum):
    # lecture
    NO_TEXT_DETECTED = "no_text_detected"
    LOW_CONFIDENCE = "low_confidence"

    # rapprochement catalogue
    AMBIGUOUS_MATCH = "ambiguous_match"
    UNKNOWN_PRODUCT = "unknown_product"

    # erreurs infra
    RECOGNITION_UNAVAILABLE = "recognition_unavailable"
