"""Data model for signature extraction runs."""
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional

import numpy as np

BACKGROUND_TRANSPARENT = "transparent"
BACKGROUND_WHITE = "white"
BACKGROUND_MODES = (BACKGROUND_TRANSPARENT, BACKGROUND_WHITE)

SENSITIVITY_MIN = 5
SENSITIVITY_MAX = 40

FULL_IMAGE_REGION_ID = "full-image"


def clamp_sensitivity(value: float) -> int:
    """Round and clamp a sensitivity value into the supported range."""
    return int(max(SENSITIVITY_MIN, min(SENSITIVITY_MAX, round(value))))


@dataclass(frozen=True)
class Region:
    """A user or auto-detected region in source-image pixel coordinates."""
    id: str
    x: float
    y: float
    width: float
    height: float
    rotation_degrees: float = 0.0  # clockwise, around the region center

    @property
    def center(self):
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0

    @classmethod
    def full_image(cls, width: int, height: int) -> 'Region':
        """Region covering a whole source image."""
        return cls(id=FULL_IMAGE_REGION_ID, x=0, y=0, width=width, height=height)


@dataclass(frozen=True)
class OutputSpec:
    """Canvas size and background of every processed signature."""
    width: int = 452
    height: int = 224
    background: str = BACKGROUND_TRANSPARENT

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Output size must be positive, got {self.width}x{self.height}")
        if self.background not in BACKGROUND_MODES:
            raise ValueError(f"Unknown background mode: {self.background!r}")


def _freeze(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class ProcessedSignature:
    """
    Result of processing one region.

    ``width`` and ``height`` describe ``processed_bitmap``. A degraded record
    carries the unprocessed crop as its bitmap.
    """
    id: str
    raw_crop: np.ndarray
    processed_bitmap: np.ndarray
    degraded: bool = False
    annotation: Optional[str] = None

    def __post_init__(self):
        _freeze(self.raw_crop)
        _freeze(self.processed_bitmap)

    @property
    def width(self) -> int:
        return int(self.processed_bitmap.shape[1])

    @property
    def height(self) -> int:
        return int(self.processed_bitmap.shape[0])

    def with_annotation(self, annotation: Optional[str]) -> 'ProcessedSignature':
        return replace(self, annotation=annotation)


@dataclass
class SignatureSet:
    """Ordered collection of the current signatures, keyed by region id."""
    signatures: List[ProcessedSignature] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.signatures)

    def __iter__(self):
        return iter(self.signatures)

    def get(self, signature_id: str) -> Optional[ProcessedSignature]:
        for sig in self.signatures:
            if sig.id == signature_id:
                return sig
        return None

    def replace(self, results: Iterable[ProcessedSignature], keep_annotations: bool = True) -> None:
        """
        Replace the collection with a fresh run's results.

        With ``keep_annotations`` the annotations of records whose id survives
        are carried over to the new record.
        """
        annotations: Dict[str, Optional[str]] = {}
        if keep_annotations:
            annotations = {sig.id: sig.annotation for sig in self.signatures if sig.annotation}
        merged = []
        for sig in results:
            if sig.annotation is None and sig.id in annotations:
                sig = sig.with_annotation(annotations[sig.id])
            merged.append(sig)
        self.signatures = merged

    def annotate(self, signature_id: str, text: Optional[str]) -> bool:
        """Set the annotation of one record. Returns False if the id is unknown."""
        for index, sig in enumerate(self.signatures):
            if sig.id == signature_id:
                self.signatures[index] = sig.with_annotation(text or None)
                return True
        return False
