"""
Smart Image Compression - command line interface.

Walks a directory tree, picks format and quality per image and mirrors the
tree into the output directory.
"""

import argparse
import os
import sys
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional

from smart_compress.errors import CompressionError
from smart_compress.logger import configure_logging
from smart_compress.models import Constraints, CompressionOutcome
from smart_compress.orchestrator import AnalysisReport, CompressionOrchestrator
from smart_compress.pool import BatchScheduler
from smart_compress.sizes import format_size

DEFAULT_EXTENSIONS = ['.jpg', '.jpeg', '.png', '.bmp', '.tga', '.tiff', '.tif', '.webp']


@dataclass
class FileJob:
    input_path: str
    # output path without the extension of the chosen format
    output_base: str
    relative_path: str
    output_path: Optional[str] = None


@dataclass
class FileReport:
    job: FileJob
    original_size: int
    outcome: Optional[CompressionOutcome] = None
    analysis: Optional[AnalysisReport] = None

    @property
    def reduction(self) -> float:
        if not self.outcome or not self.original_size:
            return 0.0
        return (self.original_size - self.outcome.size_bytes) / self.original_size * 100


def collect_jobs(input_dir: str, output_dir: str, file_extensions: List[str]) -> List[FileJob]:
    """
    Every matching file under ``input_dir``, in a stable order.

    Outputs are named after the input with the chosen format's extension.
    Inputs in one directory that differ only by extension (``a.png`` and
    ``a.bmp``) keep their source extension in the output name (``a.png.png``,
    ``a.bmp.png``) so they never write to the same file.
    """
    file_extensions = [ext.lower() if ext.startswith('.') else f'.{ext.lower()}'
                       for ext in file_extensions]
    jobs = []
    for root, dirs, files in os.walk(input_dir):
        dirs.sort()
        matching = [file for file in sorted(files)
                    if os.path.splitext(file)[1].lower() in file_extensions]
        names = _output_names(matching)

        for file in matching:
            input_path = os.path.join(root, file)
            relative_path = os.path.relpath(input_path, input_dir)
            output_base = os.path.join(output_dir, os.path.dirname(relative_path), names[file])
            jobs.append(FileJob(input_path, output_base, relative_path))
    return jobs


def _output_names(files: List[str]) -> Dict[str, str]:
    """Output name (without extension) per file of one directory, unique ignoring case."""
    names = {file: os.path.splitext(file)[0] for file in files}
    while True:
        counts = Counter(name.lower() for name in names.values())
        clashing = [file for file, name in names.items()
                    if counts[name.lower()] > 1 and name != file]
        if not clashing:
            return names
        for file in clashing:
            names[file] = file


def _print_report(report: FileReport) -> None:
    """Per-file summary."""
    print(f"\n{'='*60}")
    print(f"Processing: {report.job.relative_path}")
    print(f"{'='*60}")

    if report.analysis is not None:
        analysis = report.analysis
        features = analysis.features
        print(f"\n📊 Image Analysis:")
        print(f"   Type: {analysis.layout.pil_mode} {analysis.width}x{analysis.height} "
              f"({analysis.width * analysis.height / 1_000_000:.1f} MP)")
        print(f"   Colors: {features.unique_color_estimate:,} unique")
        print(f"   Complexity: {analysis.complexity:.2f}/1.0")
        print(f"   Edges: {features.edge_density:.2f}  Texture: {features.texture_complexity:.2f}")
        if analysis.has_alpha:
            print(f"   Transparency: ✅ Present")
        print(f"\n⚙️ Optimal Compression:")
        print(f"   Format: {analysis.plan.format.pil_format}")
        print(f"   Quality: {analysis.plan.quality}/100")
        print(f"   Estimated savings: {analysis.estimated_savings * 100:.0f}%")
        return

    outcome = report.outcome
    reduction = report.reduction
    print(f"\n📈 Results:")
    print(f"   Format: {outcome.format.pil_format} (quality {outcome.quality})")
    print(f"   Size: {format_size(report.original_size)} → {format_size(outcome.size_bytes)}")
    print(f"   Reduction: {reduction:.1f}%")

    if reduction < 20:
        rating = "🎯 Excellent quality preservation"
    elif reduction < 40:
        rating = "👍 Good balance"
    elif reduction < 60:
        rating = "⚠️ Moderate compression"
    else:
        rating = "💥 Aggressive compression"
    print(f"   Rating: {rating}")
    print(f"{'-'*40}")


def process_directory_smart(input_dir: str, output_dir: str,
                            constraints: Optional[Constraints] = None,
                            file_extensions: Optional[List[str]] = None,
                            workers: Optional[int] = None,
                            analyze_only: bool = False,
                            orchestrator: Optional[CompressionOrchestrator] = None) -> List[FileReport]:
    """
    Process directory with smart compression.

    Args:
        input_dir: Input directory containing images
        output_dir: Output directory for compressed images
        constraints: Optional size/quality/geometry limits
        file_extensions: List of file extensions to process
        workers: Files compressed concurrently
        analyze_only: Report the chosen plan without writing files
        orchestrator: Pipeline to use (defaults to the Pillow-backed one)

    Returns:
        Reports for the files that were processed successfully.
    """
    orchestrator = orchestrator or CompressionOrchestrator()
    jobs = collect_jobs(input_dir, output_dir, file_extensions or DEFAULT_EXTENSIONS)

    def run(job: FileJob) -> FileReport:
        with open(job.input_path, 'rb') as f:
            data = f.read()

        if analyze_only:
            return FileReport(job, len(data), analysis=orchestrator.analyze(data, constraints))

        outcome = orchestrator.compress(data, constraints)
        job.output_path = f'{job.output_base}.{outcome.format.extension}'
        os.makedirs(os.path.dirname(job.output_path) or '.', exist_ok=True)
        with open(job.output_path, 'wb') as f:
            f.write(outcome.data)
        return FileReport(job, len(data), outcome=outcome)

    results = BatchScheduler(max_workers=workers).process_batch(jobs, run)

    reports = []
    error_count = 0
    for job, result in zip(jobs, results):
        if result.ok:
            reports.append(result.value)
            _print_report(result.value)
        else:
            error_count += 1
            print(f"❌ Failed to compress: {job.relative_path} ({result.error})")

    _print_summary(reports, error_count, analyze_only)
    return reports


def _print_summary(reports: List[FileReport], error_count: int, analyze_only: bool) -> None:
    if not reports:
        print("No images were processed.")
        return

    print(f"\n{'='*60}")
    print("🎉 SMART COMPRESSION SUMMARY")
    print(f"{'='*60}")
    print(f"📁 Files processed: {len(reports)}")
    print(f"❌ Errors: {error_count}")

    if not analyze_only:
        total_original_size = sum(r.original_size for r in reports)
        total_new_size = sum(r.outcome.size_bytes for r in reports)
        total_reduction = 0.0
        if total_original_size > 0:
            total_reduction = (total_original_size - total_new_size) / total_original_size * 100

        print(f"💾 Total size: {format_size(total_original_size)} → {format_size(total_new_size)}")
        print(f"📉 Overall reduction: {total_reduction:.1f}%")
        print(f"💵 Space saved: {format_size(total_original_size - total_new_size)}")

    print(f"{'='*60}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='smart-compress',
        description='Smart Image Compression - picks format and quality per image',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s input_folder output_folder
  %(prog)s input_folder output_folder --target-size 500kb
  %(prog)s input_folder output_folder --max-width 1920 --max-height 1080
  %(prog)s input_folder output_folder --formats webp jpeg --min-quality 70
  %(prog)s input_folder output_folder --analyze-only
        """
    )

    parser.add_argument('input_dir', help='Input directory containing images')
    parser.add_argument('output_dir', help='Output directory for compressed images')
    parser.add_argument('--target-size',
                        help='Target size per image (e.g. 500kb, 1.5mb, or bytes)')
    parser.add_argument('--max-width', type=int,
                        help='Maximum width in pixels (maintains aspect ratio)')
    parser.add_argument('--max-height', type=int,
                        help='Maximum height in pixels (maintains aspect ratio)')
    parser.add_argument('--min-quality', type=int,
                        help='Lowest acceptable quality (1-100)')
    parser.add_argument('--formats', nargs='+',
                        help='Preferred output formats, in order (png, jpeg, webp, avif)')
    parser.add_argument('--extensions', nargs='+', default=DEFAULT_EXTENSIONS,
                        help='File extensions to process')
    parser.add_argument('--workers', type=int,
                        help='Number of files compressed in parallel')
    parser.add_argument('--analyze-only', action='store_true',
                        help='Print the chosen format and quality without writing files')
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main function with command line interface."""
    args = build_parser().parse_args(argv)
    configure_logging()

    # Validate input
    if not os.path.isdir(args.input_dir):
        print(f"Error: Input directory '{args.input_dir}' does not exist")
        sys.exit(1)

    if args.workers is not None and args.workers <= 0:
        print("Error: Workers must be positive")
        sys.exit(1)

    try:
        constraints = Constraints.from_options(
            target_size=args.target_size,
            min_quality=args.min_quality,
            max_width=args.max_width,
            max_height=args.max_height,
            preferred_formats=args.formats,
        )
    except CompressionError as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    if not args.analyze_only:
        os.makedirs(args.output_dir, exist_ok=True)

    # Print configuration
    print(f"{'='*60}")
    print("🚀 SMART IMAGE COMPRESSION")
    print(f"{'='*60}")
    print(f"📂 Input: {args.input_dir}")
    print(f"📂 Output: {args.output_dir}")

    if constraints.target_size_bytes:
        print(f"🎯 Target size: {args.target_size} per image")
        print("💡 Mode: Size-constrained optimization")
    elif args.analyze_only:
        print("💡 Mode: Analysis only")
    else:
        print("💡 Mode: Quality-optimized compression")

    if args.max_width or args.max_height:
        print(f"📐 Resolution limit: {args.max_width or 'auto'}x{args.max_height or 'auto'}")
    if constraints.preferred_formats:
        print(f"🖼️ Preferred formats: {', '.join(f.value for f in constraints.preferred_formats)}")

    print(f"📄 Extensions: {', '.join(args.extensions)}")
    print(f"{'='*60}")

    process_directory_smart(
        args.input_dir,
        args.output_dir,
        constraints,
        args.extensions,
        args.workers,
        args.analyze_only,
    )


if __name__ == "__main__":
    main()
