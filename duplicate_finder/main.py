import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from . import config
from .catalog.filesystem import FilesystemCatalog
from .config import ScanSettings
from .core import DuplicateFinderApp
from .exceptions import ConfigurationError, DuplicateFinderError
from .models import DuplicateFilter, ScanResult
from .scanning.progress import ScanPhase


def setup_logging(log_dir: Path, verbose: bool):
    """Sets up logging to both console and a file next to the database."""
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "duplicate_finder.log"

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.WARNING)


class TqdmProgress:
    """Renders (phase, fraction) events as one tqdm bar per phase."""

    def __init__(self):
        self.bar: Optional[tqdm] = None
        self.phase: Optional[ScanPhase] = None

    def __call__(self, phase: ScanPhase, fraction: float):
        if phase != self.phase:
            self.close()
            self.phase = phase
            if phase.is_terminal:
                return
            self.bar = tqdm(total=100, desc=phase.value.replace("_", " ").capitalize(), unit="%")
        if self.bar is not None:
            self.bar.n = int(fraction * 100)
            self.bar.refresh()

    def close(self):
        if self.bar is not None:
            self.bar.close()
            self.bar = None


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Duplicate Finder: exact and near-duplicate photos and videos")

    p.add_argument("root", type=Path, help="Media directory to scan")

    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--delta", action="store_true", help="Only scan assets newer than the last scan")
    mode.add_argument("--refresh", action="store_true", help="Drop vanished assets from the stored result")

    p.add_argument("--db", type=Path, default=None, help="Custom path for SQLite DB (default: root/duplicates.db)")
    p.add_argument("--skip-dirs-file", type=Path, default=None, help="File containing paths to ignore")
    p.add_argument("--workers", type=int, default=config.MAX_WORKERS, help="Parallel bucket comparisons")
    p.add_argument("--quick-buckets", action="store_true", help="Bucket images by byte-size range instead of aspect")
    p.add_argument("--similar-threshold", type=float, default=config.SIMILAR_HASH_DISTANCE,
                   help="Hash distance below which images count as similar")
    p.add_argument("--representative-only", action="store_true",
                   help="Compare new assets only with each group's first item; report one row per group")

    p.add_argument("--report-csv", type=Path, default=None, help="Write a CSV report of the groups")
    p.add_argument("--export-json", type=Path, default=None, help="Write the scan result as JSON")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    return p.parse_args(argv)


def load_skip_dirs(skip_file: Path) -> set[Path]:
    if not skip_file or not skip_file.exists():
        return set()

    skips = set()
    with skip_file.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                skips.add(Path(line))
    return skips


def build_settings(args) -> ScanSettings:
    return ScanSettings(
        max_workers=args.workers,
        bucket_strategy=config.BUCKET_STRATEGY_QUICK if args.quick_buckets else config.BUCKET_STRATEGY_COARSE,
        similar_hash_distance=args.similar_threshold,
        compare_all_group_members=not args.representative_only,
    )


def log_summary(result: ScanResult):
    logging.info(f"Assets scanned:   {result.total_assets_scanned}")
    logging.info(f"Duplicate groups: {len(result.groups)} "
                 f"({len(result.exact_groups)} exact, {len(result.similar_groups)} similar)")
    logging.info(f"Duplicates found: {result.duplicates_found}")


def main(argv=None):
    args = parse_args(argv)

    root = args.root.resolve()
    db_path = args.db.resolve() if args.db else root / "duplicates.db"
    setup_logging(db_path.parent, args.verbose)

    logging.info("=== Duplicate Finder Started ===")
    logging.info(f"Root: {root}")
    logging.info(f"DB:   {db_path}")

    try:
        settings = build_settings(args)
    except ConfigurationError as e:
        logging.error(f"Invalid settings: {e}")
        sys.exit(2)

    skip_dirs = load_skip_dirs(args.skip_dirs_file) if args.skip_dirs_file else set()
    catalog = FilesystemCatalog(root, skip_dirs=skip_dirs, frame_position=settings.video_frame_position)
    progress = TqdmProgress()
    app = DuplicateFinderApp(db_path, catalog, settings, progress_callback=progress)

    try:
        if args.refresh:
            result = app.refresh()
            if result is None:
                logging.error("Nothing to refresh. Run a full scan first.")
                sys.exit(1)
        else:
            result = app.scan(delta=args.delta)
    except KeyboardInterrupt:
        logging.warning("Scan cancelled by user. Stored results are unchanged.")
        sys.exit(1)
    except DuplicateFinderError:
        logging.exception("Scan failed. Stored results are unchanged.")
        sys.exit(1)
    finally:
        progress.close()

    log_summary(result)
    if app.coordinator.stats:
        logging.info(f"Scan took {app.coordinator.stats.scan_duration:.1f}s")

    if args.report_csv:
        app.write_report(result, args.report_csv, DuplicateFilter(min_confidence=0.0),
                         representative_only=args.representative_only)
    if args.export_json:
        app.export_json(result, args.export_json)


if __name__ == "__main__":
    main()
