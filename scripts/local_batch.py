"""
Quick local helper: runs a rendition batch over local images and writes every
rendition to disk. This bypasses the HTTP layer.
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
import mimetypes

# Ensure project root is importable when running from scripts/
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rendition_service.config import SUPPORTED_FORMATS
from rendition_service.models import OptimizeSettings
from rendition_service.session import OptimizerSession, UploadedFile
from rendition_service.utils import format_file_size


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Produce optimized renditions of local images")
    parser.add_argument("inputs", nargs="+", help="Paths to the input images")
    parser.add_argument("--output", required=True, help="Directory to write renditions to")
    parser.add_argument("--widths", type=int, nargs="*", default=[400, 800], help="Target widths")
    parser.add_argument("--custom-width", type=int, default=None, help="Extra custom width")
    parser.add_argument("--format", default="webp", choices=list(SUPPORTED_FORMATS), help="Output format")
    parser.add_argument("--quality", type=int, default=80, help="Quality 1-100")
    parser.add_argument("--allow-upscaling", action="store_true", help="Allow widths above the source width")
    parser.add_argument("--keep-metadata", action="store_true", help="Keep EXIF/ICC metadata")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    output_dir = Path(args.output)

    uploads = []
    for raw in args.inputs:
        path = Path(raw)
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")
        uploads.append(UploadedFile(path.name, path.read_bytes(), mimetypes.guess_type(path.name)[0]))

    session = OptimizerSession()
    submitted = session.submit_images(uploads)
    for filename, reason in submitted.rejected:
        print(f"Skipped {filename}: {reason}")

    settings = OptimizeSettings(
        output_format=args.format,
        predefined_widths=frozenset(args.widths),
        custom_width=args.custom_width,
        quality=args.quality,
        prevent_upscaling=not args.allow_upscaling,
        preserve_metadata=args.keep_metadata,
    )
    asyncio.run(session.optimize(settings))

    output_dir.mkdir(parents=True, exist_ok=True)
    for job in session.registry.jobs():
        print(f"{job.source.filename}: {job.state.value} ({format_file_size(job.source.size)})")
        for result in job.renditions:
            filename, _, data = session.download(job.id, result.effective_width)
            (output_dir / filename).write_bytes(data)
            print(f"  wrote {filename} {result.effective_width}x{result.height} {format_file_size(len(data))}")
        for failure in job.failures:
            print(f"  failed {failure.requested_width}px: {failure.message}")


if __name__ == "__main__":
    main()
