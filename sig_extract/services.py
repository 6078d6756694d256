"""Service layer orchestrating signature extraction."""
import logging
from typing import Callable, Iterator, List, Optional, Sequence

import numpy as np

from . import analysis, image_ops
from .backend import ImageBackend
from .config import AppSettings
from .image_ops import InvalidRegionError
from .state import (
    OutputSpec, ProcessedSignature, Region, SignatureSet, clamp_sensitivity
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProcessedSignature, int, int], None]


class UserFacingError(Exception):
    """User-facing error that should be shown in UI."""
    pass


class SignatureService:
    """
    Runs the extraction pipeline over the regions of one source photo.

    Regions are processed one after another. Each region's intermediate
    buffers live in their own backend scope and are released before the
    next region starts.
    """

    def __init__(self, backend: Optional[ImageBackend] = None, settings: Optional[AppSettings] = None):
        """
        Initialize signature service.

        Args:
            backend: Image backend, created with ``ImageBackend.create()`` if omitted
            settings: Application settings providing defaults
        """
        self.backend = backend or ImageBackend.create()
        self.settings = settings or AppSettings()
        self.signatures = SignatureSet()
        self._progress_callback: Optional[ProgressCallback] = None
        self._source: Optional[np.ndarray] = None
        self._regions: List[Region] = []

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        """Set callback for streamed results (signature, index, total)."""
        self._progress_callback = callback

    def _update_progress(self, signature: ProcessedSignature, index: int, total: int) -> None:
        """Internal method to call progress callback."""
        if self._progress_callback:
            self._progress_callback(signature, index, total)

    def default_output_spec(self) -> OutputSpec:
        try:
            return OutputSpec(
                width=self.settings.output_width,
                height=self.settings.output_height,
                background=self.settings.background
            )
        except ValueError as e:
            raise UserFacingError(f"Invalid output settings: {e}") from e

    @staticmethod
    def _check_source(source: np.ndarray) -> None:
        if source is None or source.size == 0 or source.ndim not in (2, 3):
            raise UserFacingError("Source image is empty or not an image")

    # --- heuristics ------------------------------------------------------

    def recommend_sensitivity(self, source: np.ndarray) -> int:
        """Default sensitivity for a newly loaded photo."""
        self._check_source(source)
        return analysis.recommend_sensitivity(self.backend, source)

    def detect_regions(self, source: np.ndarray, sensitivity: Optional[int] = None) -> List[Region]:
        """Candidate regions used to seed an editor."""
        self._check_source(source)
        if sensitivity is None:
            sensitivity = self.settings.sensitivity
        return analysis.detect_regions(self.backend, source, clamp_sensitivity(sensitivity))

    # --- pipeline --------------------------------------------------------

    def process_region(
        self,
        source: np.ndarray,
        region: Region,
        sensitivity: int,
        output_spec: OutputSpec
    ) -> ProcessedSignature:
        """
        Run every stage for one region.

        Any failure after the crop has been extracted degrades to a record
        holding the raw crop as its bitmap.

        Raises:
            InvalidRegionError: If the region has no pixels to process
        """
        backend = self.backend
        raw_crop = backend.to_rgba(image_ops.extract_crop(backend, source, region))

        try:
            with backend.scope(f"region {region.id}") as scope:
                gray = scope.track(backend.grayscale(raw_crop))
                mask = scope.track(image_ops.binarize(backend, gray, sensitivity))
                refined = scope.track(image_ops.refine_mask(backend, mask, sensitivity))
                crop_rect = image_ops.content_crop_rect(backend, refined)
                bitmap = image_ops.composite(backend, refined, crop_rect, output_spec)
        except Exception as e:
            logger.warning(f"Processing failed for region {region.id}, returning raw crop: {e}", exc_info=True)
            return ProcessedSignature(
                id=region.id, raw_crop=raw_crop, processed_bitmap=raw_crop.copy(), degraded=True
            )

        return ProcessedSignature(id=region.id, raw_crop=raw_crop, processed_bitmap=bitmap)

    def iter_process(
        self,
        source: np.ndarray,
        regions: Sequence[Region],
        sensitivity: Optional[int] = None,
        output_spec: Optional[OutputSpec] = None
    ) -> Iterator[ProcessedSignature]:
        """
        Process regions in input order, yielding each result as soon as it is done.

        An empty region list means the whole image. Regions without pixels
        are skipped. The progress callback fires before each yield.

        Args:
            source: Source image (gray, RGB or RGBA)
            regions: Regions to process
            sensitivity: Sensitivity, defaults to the settings value
            output_spec: Output canvas, defaults to the settings values

        Yields:
            One ProcessedSignature per valid region
        """
        self._check_source(source)
        if sensitivity is None:
            sensitivity = self.settings.sensitivity
        clamped = clamp_sensitivity(sensitivity)
        if clamped != sensitivity:
            logger.info(f"Sensitivity {sensitivity} clamped to {clamped}")
        if output_spec is None:
            output_spec = self.default_output_spec()

        if not regions:
            height, width = source.shape[:2]
            regions = [Region.full_image(width, height)]

        total = len(regions)
        emitted = 0
        logger.info(
            f"Processing {total} regions (sensitivity={clamped}, "
            f"output={output_spec.width}x{output_spec.height}, background={output_spec.background})"
        )
        for region in regions:
            try:
                signature = self.process_region(source, region, clamped, output_spec)
            except InvalidRegionError as e:
                logger.debug(f"Skipping region: {e}")
                continue
            except Exception as e:
                logger.error(f"Could not extract region {region.id}: {e}", exc_info=True)
                continue
            self._update_progress(signature, emitted, total)
            emitted += 1
            yield signature

        logger.info(f"Finished: {emitted} of {total} regions produced a signature")

    def process(
        self,
        source: np.ndarray,
        regions: Sequence[Region],
        sensitivity: Optional[int] = None,
        output_spec: Optional[OutputSpec] = None,
        keep_annotations: bool = False
    ) -> List[ProcessedSignature]:
        """
        Process regions and replace the current signature set with the results.

        A fresh run starts with no annotations. With ``keep_annotations`` the
        annotations of ids already in the set are carried over.

        Returns:
            The processed signatures in input order
        """
        results = list(self.iter_process(source, regions, sensitivity, output_spec))
        self._source = source
        self._regions = list(regions)
        self.signatures.replace(results, keep_annotations=keep_annotations)
        return list(self.signatures)

    def reprocess(
        self,
        sensitivity: Optional[int] = None,
        output_spec: Optional[OutputSpec] = None
    ) -> List[ProcessedSignature]:
        """
        Re-run the last processed regions with new parameters.

        This is a fresh run; results are matched back to the current set by id.

        Raises:
            UserFacingError: If nothing has been processed yet
        """
        if self._source is None:
            raise UserFacingError("Nothing to reprocess yet")
        return self.process(self._source, self._regions, sensitivity, output_spec, keep_annotations=True)

    def annotate(self, signature_id: str, text: Optional[str]) -> None:
        """
        Attach a remark to a processed signature.

        Raises:
            UserFacingError: If no signature has that id
        """
        if not self.signatures.annotate(signature_id, text):
            raise UserFacingError(f"No signature with id {signature_id}")
