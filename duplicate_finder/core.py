import logging
from pathlib import Path
from typing import Iterable, Optional

from .config import ScanSettings
from .database.db import DBManager
from .database.ops import ScanResultStore
from .models import DuplicateFilter, ScanResult
from .reporting import ReportGenerator
from .scanning.coordinator import ScanCoordinator
from .scanning.progress import ProgressCallback
from . import serializers


class DuplicateFinderApp:
    """
    Wires a catalog, the scan coordinator and the result store together.

    A scan only reaches the store once it has completed; a failed or
    cancelled scan leaves the previously stored result untouched.
    """

    def __init__(self, db_path: Path, catalog, settings: Optional[ScanSettings] = None,
                 progress_callback: Optional[ProgressCallback] = None):
        self.db_manager = DBManager(db_path)
        self.catalog = catalog
        self.coordinator = ScanCoordinator(catalog, settings, progress_callback=progress_callback)

    def scan(self, delta: bool = False) -> ScanResult:
        with self.db_manager as conn:
            store = ScanResultStore(conn, self.db_manager.write_lock)

            if delta:
                previous = store.load_latest()
                if previous is not None:
                    logging.info(f"{self.coordinator.count_new_assets(previous)} assets since last scan")
                result = self.coordinator.run_delta_scan(previous)
            else:
                result = self.coordinator.run_full_scan()

            store.save(result)
            return result

    def refresh(self) -> Optional[ScanResult]:
        with self.db_manager as conn:
            store = ScanResultStore(conn, self.db_manager.write_lock)
            current = store.load_latest()
            if current is None:
                logging.warning("No stored scan result to refresh")
                return None
            result = self.coordinator.refresh(current)
            store.save(result)
            return result

    def delete_assets(self, asset_ids: Iterable[str]) -> Optional[ScanResult]:
        with self.db_manager as conn:
            store = ScanResultStore(conn, self.db_manager.write_lock)
            current = store.load_latest()
            if current is None:
                logging.warning("No stored scan result; nothing to reconcile")
                return None
            result = self.coordinator.delete_assets_and_reconcile(asset_ids, current)
            store.save(result)
            return result

    def latest_result(self) -> Optional[ScanResult]:
        with self.db_manager as conn:
            return ScanResultStore(conn, self.db_manager.write_lock).load_latest()

    def export_json(self, result: ScanResult, output: Path):
        serializers.dump(result, output)

    def write_report(self, result: ScanResult, output_csv: Path,
                     duplicate_filter: Optional[DuplicateFilter] = None,
                     representative_only: bool = False) -> int:
        return ReportGenerator(result).generate_group_report(output_csv, duplicate_filter, representative_only)
