import csv
import logging
from pathlib import Path
from typing import List, Optional

from .models import DuplicateFilter, DuplicateGroup, DuplicateItem, ScanResult

HEADERS = [
    "Group ID",
    "Similarity",
    "Confidence",
    "Media Kind",
    "Asset",
    "Role",
    "Dimensions",
    "Duration",
    "Size (bytes)",
    "Created",
    "Location",
    "Device",
    "Notes",
]


class ReportGenerator:
    def __init__(self, result: ScanResult):
        self.result = result

    def generate_group_report(self, output_csv: Path, duplicate_filter: Optional[DuplicateFilter] = None,
                              representative_only: bool = False) -> int:
        """
        Writes one row per duplicate item.

        The first item of each group is marked "Keep", the rest "Duplicate".
        With representative_only, one row per group is written instead.
        Returns the number of groups reported.
        """
        groups = list(self.result.groups)
        if duplicate_filter is not None:
            groups = duplicate_filter.apply(groups)

        logging.info(f"Writing report for {len(groups)} groups -> {output_csv}")

        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(HEADERS)
            for group in groups:
                items = group.items[:1] if representative_only else group.items
                notes = self._group_notes(group)
                for position, item in enumerate(items):
                    writer.writerow(self._row(group, item, position, notes))

        logging.info(f"Report complete. {len(groups)} groups written.")
        return len(groups)

    def _row(self, group: DuplicateGroup, item: DuplicateItem, position: int, notes: str) -> list:
        asset = item.asset
        device = " ".join(p for p in (asset.device_make, asset.device_model) if p)
        return [
            group.id,
            group.similarity_type.value,
            f"{group.match_confidence:.2f}",
            asset.media_kind.value,
            asset.identifier,
            "Keep" if position == 0 else "Duplicate",
            item.dimensions,
            item.duration_display or "",
            item.byte_size,
            asset.creation_date.isoformat(sep=" ") if asset.creation_date else "",
            item.location_display or "",
            device,
            notes if position == 0 else "",
        ]

    def _group_notes(self, group: DuplicateGroup) -> str:
        notes: List[str] = []
        mismatched = group.mismatched_properties
        if mismatched:
            notes.append("Differs in: " + ", ".join(mismatched))
        if group.has_multiple_dates:
            notes.append("Spans multiple dates")
        return "; ".join(notes)
