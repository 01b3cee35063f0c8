"""Command-line interface for the EML batch converter."""

import argparse
import asyncio
import os
import sys
import time
from typing import List, Optional, Set

from . import __version__
from .config import ConversionConfig, EXECUTORS
from .errors import ConfigurationError
from .files import FileHandle, PathFile, collect_eml_files
from .models import NO_SUBJECT, BatchItemResult, MergedOutput, ProgressEvent
from .orchestrator import BatchOrchestrator, RunCallbacks
from .report import REPORT_NAME, create_skipped_files_report
from .utils import (
    configure_logging,
    format_filename,
    get_unique_filepath,
    get_year_month,
    pdf_name_for,
)

# --merge values on the command line -> config values
MERGE_CHOICES = {
    "none": "none",
    "per-batch": "per_batch",
    "all": "all",
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog='eml-batch-pdf',
        description='Convert batches of EML email files to PDF',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -i ~/emails                        Convert emails in ~/emails
  %(prog)s -i ~/emails -o ~/pdfs              Specify output folder
  %(prog)s -i a.eml b.eml --merge all         Merge everything into one PDF
  %(prog)s -i ~/emails --batch-size 20 --merge per-batch --auto-print
        """
    )

    parser.add_argument(
        '-i', '--input',
        nargs='+',
        metavar='PATH',
        help='Input folder containing EML files, or individual EML files'
    )

    parser.add_argument(
        '-o', '--output',
        type=str,
        metavar='FOLDER',
        help='Output folder for PDFs (default: INPUT/PDF)'
    )

    parser.add_argument(
        '--batch-size',
        type=int,
        default=50,
        metavar='N',
        help='Files per batch (default: 50)'
    )

    parser.add_argument(
        '--concurrency',
        type=int,
        default=4,
        metavar='N',
        help='Files converted at the same time within a batch (default: 4)'
    )

    parser.add_argument(
        '--merge',
        choices=list(MERGE_CHOICES),
        default='none',
        help='Write one PDF per file, one per batch, or one for the whole run (default: none)'
    )

    parser.add_argument(
        '--auto-print',
        action='store_true',
        help='Send every finished PDF to the default printer'
    )

    parser.add_argument(
        '--page-size',
        choices=['a4', 'letter'],
        default='a4',
        help='PDF page size (default: a4)'
    )

    parser.add_argument(
        '--no-html',
        action='store_true',
        help='Do not render HTML bodies (use extracted text instead)'
    )

    parser.add_argument(
        '--executor',
        choices=EXECUTORS,
        default='process',
        help='Where conversions run (default: process)'
    )

    parser.add_argument(
        '--retries',
        type=int,
        default=0,
        metavar='N',
        help='Retry a failed conversion up to N times (default: 0)'
    )

    parser.add_argument(
        '--organize-by-date',
        action='store_true',
        help='Organize per-file output into YEAR/MONTH folders'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    parser.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Suppress all output except errors'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    return parser


def print_progress(current: int, total: int, filename: str, start_time: float, width: int = 40) -> None:
    """Print a terminal progress bar."""
    if total == 0:
        return

    percent = current / total
    filled = int(width * percent)
    bar = '=' * filled + '-' * (width - filled)

    elapsed = time.time() - start_time
    if current > 0:
        eta = (elapsed / current) * (total - current)
        eta_str = f"ETA: {int(eta)}s"
    else:
        eta_str = "ETA: --"

    display_name = filename[:30] + '...' if len(filename) > 30 else filename.ljust(33)

    print(f'\r[{bar}] {current}/{total} {display_name} {eta_str}', end='', flush=True)


def resolve_inputs(paths: List[str]) -> Optional[List[FileHandle]]:
    """Expand folders into their EML files. Returns None if a path is missing."""
    files: List[FileHandle] = []
    for path in paths:
        if os.path.isdir(path):
            files.extend(collect_eml_files(path))
        elif os.path.isfile(path):
            files.append(PathFile(path))
        else:
            print(f"Error: Input does not exist: {path}", file=sys.stderr)
            return None
    return files


def default_output_folder(paths: List[str]) -> str:
    first = paths[0]
    base = first if os.path.isdir(first) else os.path.dirname(os.path.abspath(first))
    return os.path.join(base, "PDF")


class OutputWriter:
    """Writes per-file and merged PDFs into the output folder."""

    def __init__(self, output_folder: str, organize_by_date: bool = False):
        self.output_folder = output_folder
        self.organize_by_date = organize_by_date
        self.used_names: Set[str] = set()
        self.written: List[str] = []

    def write_item(self, item: BatchItemResult, data: bytes) -> str:
        folder = self.output_folder
        if self.organize_by_date:
            year, month = get_year_month(item.date)
            folder = os.path.join(folder, year, month)
        os.makedirs(folder, exist_ok=True)

        if item.date is None and item.subject in ("", NO_SUBJECT):
            # nothing to name it by except the source file
            name = format_filename(None, pdf_name_for(item.name)[:-4], self.used_names)
        else:
            name = format_filename(item.date, item.subject, self.used_names)
        self.used_names.add(name)
        return self._write(folder, f"{name}.pdf", data)

    def write_merged(self, merged: MergedOutput) -> str:
        os.makedirs(self.output_folder, exist_ok=True)
        return self._write(self.output_folder, merged.name, merged.data)

    def _write(self, folder: str, filename: str, data: bytes) -> str:
        path = get_unique_filepath(folder, filename)
        with open(path, 'wb') as f:
            f.write(data)
        self.written.append(path)
        return path


def run_cli(args: argparse.Namespace) -> int:
    """
    Run the CLI conversion.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if not args.input:
        print("Error: Input is required. Use -i or --input to specify.", file=sys.stderr)
        return 1

    files = resolve_inputs(args.input)
    if files is None:
        return 1
    if not files:
        print("No EML files found in the specified input.")
        return 1

    config = ConversionConfig.load()
    config.batch_size = args.batch_size
    config.concurrency_per_batch = args.concurrency
    config.merge_strategy = MERGE_CHOICES[args.merge]
    config.auto_print = args.auto_print
    config.page_size = args.page_size
    config.render_html = not args.no_html
    config.executor = args.executor
    config.retry_attempts = args.retries
    config.organize_by_date = args.organize_by_date

    try:
        config.validate()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    output_folder = args.output or default_output_folder(args.input)
    writer = OutputWriter(output_folder, config.organize_by_date)

    if not args.quiet:
        print(f"Converting {len(files)} EML files")
        print(f"Output folder: {output_folder}")
        if config.merge_strategy != "none":
            print(f"Merge: {args.merge}")
        print()

    start_time = time.time()
    def on_complete(item: BatchItemResult, data: bytes) -> None:
        writer.write_item(item, data)

    def on_error(item: BatchItemResult) -> None:
        if args.verbose:
            print(f"\n  Failed: {item.error}")

    def on_merged(merged: MergedOutput) -> None:
        writer.write_merged(merged)
        if args.verbose:
            print(f"\n  Wrote {merged.name} ({merged.page_count} pages)")

    def on_progress(event: ProgressEvent) -> None:
        if not args.quiet:
            print_progress(event.processed, event.total, event.current or "", start_time)

    orchestrator = BatchOrchestrator(
        config,
        RunCallbacks(
            on_file_complete=on_complete,
            on_file_error=on_error,
            on_merged=on_merged,
            on_progress=on_progress,
        ),
    )

    try:
        run = asyncio.run(orchestrator.run(files))
    except KeyboardInterrupt:
        print("\n\nConversion cancelled by user.")
        return 1

    if not args.quiet:
        print()
        print()

    summary = run.summary()
    if summary.failed > 0:
        os.makedirs(output_folder, exist_ok=True)
        create_skipped_files_report(run.items, output_folder, config)

    if not args.quiet:
        elapsed = time.time() - start_time
        print("=" * 50)
        print("Conversion Complete!")
        print("=" * 50)
        print(f"Total files:    {summary.total}")
        print(f"Successful:     {summary.successful}")
        print(f"Failed:         {summary.failed}")
        if summary.merged:
            print(f"Merged PDFs:    {summary.merged}")
        print(f"Time elapsed:   {elapsed:.1f}s")
        print(f"Output folder:  {output_folder}")

        if summary.failed > 0:
            print(f"\nSee {REPORT_NAME} for details on failed conversions.")

    if args.verbose:
        for item in run.items:
            for warning in item.warnings:
                print(f"  ! {item.name}: {warning}")

    return 0 if summary.failed == 0 else 1


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Optional list of arguments (uses sys.argv if not provided)

    Returns:
        Exit code
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)
    configure_logging(parsed_args.verbose, parsed_args.quiet)
    return run_cli(parsed_args)


if __name__ == '__main__':
    sys.exit(main())
