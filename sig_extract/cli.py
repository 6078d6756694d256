"""Command-line interface for SigExtract."""
import argparse
import sys
import logging
import uuid
from pathlib import Path
from typing import List, Optional

from .config import AppSettings, load_settings
from .repository import RepositoryError, load_image, save_signatures
from .services import SignatureService, UserFacingError
from .state import BACKGROUND_MODES, OutputSpec, ProcessedSignature, Region

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def parse_region(text: str) -> Region:
    """
    Parse ``X,Y,W,H`` or ``X,Y,W,H,ROTATION`` into a Region.

    Raises:
        argparse.ArgumentTypeError: If the text is malformed
    """
    parts = [p.strip() for p in text.split(',')]
    if len(parts) not in (4, 5):
        raise argparse.ArgumentTypeError(f"Expected X,Y,W,H[,ROTATION], got {text!r}")
    try:
        values = [float(p) for p in parts]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Region values must be numbers: {text!r}")
    rotation = values[4] if len(values) == 5 else 0.0
    return Region(
        id=uuid.uuid4().hex,
        x=values[0], y=values[1], width=values[2], height=values[3],
        rotation_degrees=rotation
    )


def _log_progress(signature: ProcessedSignature, index: int, total: int) -> None:
    state = "raw crop (processing failed)" if signature.degraded else f"{signature.width}x{signature.height}"
    logger.info(f"[{index + 1}/{total}] {signature.id}: {state}")


def run_headless(
    input_path: Path,
    output_dir: Optional[Path] = None,
    regions: Optional[List[Region]] = None,
    sensitivity: Optional[int] = None,
    output_spec: Optional[OutputSpec] = None,
    auto_sensitivity: bool = False,
    auto_detect: bool = False,
    settings: AppSettings = None
) -> int:
    """
    Extract signatures from one photo and write them as PNG files.

    Args:
        input_path: Photo to process
        output_dir: Output directory (defaults to <input stem>_signatures next to the photo)
        regions: Regions to process; empty means auto-detect or the whole image
        sensitivity: Sensitivity override
        output_spec: Output canvas override
        auto_sensitivity: Use the recommended sensitivity for this photo
        auto_detect: Propose regions when none are given
        settings: Application settings

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    settings = settings or load_settings()
    output_dir = output_dir or input_path.parent / f"{input_path.stem}_signatures"

    try:
        service = SignatureService(settings=settings)
        service.set_progress_callback(_log_progress)
        source = load_image(input_path)

        if sensitivity is None and (auto_sensitivity or settings.auto_sensitivity):
            sensitivity = service.recommend_sensitivity(source)

        regions = list(regions or [])
        if not regions and (auto_detect or settings.auto_detect):
            regions = service.detect_regions(source, sensitivity)
            if not regions:
                logger.warning("Auto-detect found no candidate regions, using the whole image")

        results = service.process(source, regions, sensitivity, output_spec)
        if not results:
            logger.error("No signatures were produced")
            return 1

        written = save_signatures(results, output_dir)
        degraded = sum(1 for sig in results if sig.degraded)
        if degraded:
            logger.warning(f"{degraded} region(s) could not be processed and were saved unprocessed")
        logger.info(f"Wrote {len(written)} files to {output_dir}")
        return 0

    except (UserFacingError, RepositoryError) as e:
        logger.error(str(e))
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="SigExtract - extract clean handwritten signatures from document photos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Whole photo, default settings
  sig-extract contract.jpg

  # Two boxes, the second rotated 15 degrees clockwise
  sig-extract contract.jpg --region 120,800,600,200 --region 900,780,500,220,15

  # Let the tool pick the sensitivity and propose regions, white background
  sig-extract contract.jpg --auto-sensitivity --detect --background white -o out/
        """
    )

    parser.add_argument('input', type=str, help='Photo of the signed document')

    parser.add_argument(
        '--output', '-o',
        type=str,
        default=None,
        help='Output directory for PNG files (default: <input>_signatures)'
    )

    parser.add_argument(
        '--region', '-r',
        type=parse_region,
        action='append',
        default=[],
        metavar='X,Y,W,H[,ROT]',
        help='Region to extract in source pixels; repeat for several signatures'
    )

    parser.add_argument(
        '--sensitivity', '-s',
        type=int,
        default=None,
        help='Sensitivity 5-40: lower keeps faint strokes, higher strips more background'
    )

    parser.add_argument(
        '--auto-sensitivity',
        action='store_true',
        help='Use the sensitivity recommended for this photo'
    )

    parser.add_argument(
        '--detect',
        action='store_true',
        help='Propose regions automatically when no --region is given'
    )

    parser.add_argument('--width', type=int, default=None, help='Output width in pixels')
    parser.add_argument('--height', type=int, default=None, help='Output height in pixels')

    parser.add_argument(
        '--background',
        choices=BACKGROUND_MODES,
        default=None,
        help='Output background (default from settings: transparent)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(args.verbose)

    input_path = Path(args.input).resolve()
    if not input_path.is_file():
        logger.error(f"Input file does not exist: {input_path}")
        return 1

    output_dir = None
    if args.output:
        output_dir = Path(args.output).resolve()
        if output_dir.exists() and not output_dir.is_dir():
            logger.error(f"Output path exists but is not a directory: {output_dir}")
            return 1

    # Load settings
    settings = load_settings()

    output_spec = None
    if args.width is not None or args.height is not None or args.background is not None:
        try:
            output_spec = OutputSpec(
                width=args.width if args.width is not None else settings.output_width,
                height=args.height if args.height is not None else settings.output_height,
                background=args.background or settings.background
            )
        except ValueError as e:
            logger.error(str(e))
            return 1

    return run_headless(
        input_path,
        output_dir,
        regions=args.region,
        sensitivity=args.sensitivity,
        output_spec=output_spec,
        auto_sensitivity=args.auto_sensitivity,
        auto_detect=args.detect,
        settings=settings
    )


if __name__ == '__main__':
    sys.exit(main())
