import sqlite3
import logging
import threading
from datetime import datetime
from typing import Optional, List, Dict

from ..exceptions import GroupInvariantError, ScanResultCorruptError
from ..models import (AssetRecord, DuplicateGroup, DuplicateItem, GeoLocation, MediaKind,
                      ScanResult, SimilarityType)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class ScanResultStore:
    """
    Persists the latest ScanResult.

    Saving replaces the previous result inside one transaction, so a failing
    write leaves the last known good result in place. Anything that cannot be
    decoded loads as None (the caller falls back to a full scan).
    """

    def __init__(self, conn: sqlite3.Connection, write_lock: Optional[threading.Lock] = None):
        self.conn = conn
        self.write_lock = write_lock or threading.Lock()

    def save(self, result: ScanResult) -> int:
        with self.write_lock, self.conn:
            cur = self.conn.cursor()
            cur.execute("DELETE FROM scan_results")
            cur.execute("""
                INSERT INTO scan_results (scan_date, last_asset_date, total_assets_scanned)
                VALUES (?, ?, ?)
            """, (_iso(result.scan_date), _iso(result.last_asset_date), result.total_assets_scanned))

            if cur.lastrowid is None:
                raise RuntimeError("Database INSERT failed to return a row ID.")
            scan_id = cur.lastrowid

            cur.executemany("""
                INSERT INTO duplicate_groups (scan_id, id, position, similarity_type, match_confidence)
                VALUES (?, ?, ?, ?, ?)
            """, [
                (scan_id, g.id, pos, g.similarity_type.value, g.match_confidence)
                for pos, g in enumerate(result.groups)
            ])

            item_rows = []
            for g in result.groups:
                for pos, item in enumerate(g.items):
                    a = item.asset
                    item_rows.append((
                        scan_id, g.id, pos, item.item_id, a.identifier, a.media_kind.value,
                        a.pixel_width, a.pixel_height, a.duration, item.byte_size,
                        _iso(a.creation_date),
                        a.location.latitude if a.location else None,
                        a.location.longitude if a.location else None,
                        a.device_make, a.device_model,
                    ))
            cur.executemany("""
                INSERT INTO group_items (
                    scan_id, group_id, position, item_id, asset_id, media_kind,
                    pixel_width, pixel_height, duration, byte_size, creation_date,
                    latitude, longitude, device_make, device_model
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, item_rows)

        logging.info(f"Saved scan result with {len(result.groups)} groups")
        return scan_id

    def load_latest(self) -> Optional[ScanResult]:
        try:
            return self._load_latest()
        except (sqlite3.DatabaseError, ScanResultCorruptError, GroupInvariantError, ValueError, KeyError) as e:
            logging.warning(f"Stored scan result is unreadable, ignoring it: {e}")
            return None

    def has_results(self) -> bool:
        try:
            cur = self.conn.execute("SELECT 1 FROM scan_results LIMIT 1")
            return cur.fetchone() is not None
        except sqlite3.DatabaseError:
            return False

    def scan_date(self) -> Optional[datetime]:
        try:
            cur = self.conn.execute("SELECT scan_date FROM scan_results ORDER BY id DESC LIMIT 1")
            row = cur.fetchone()
            return _parse_dt(row[0]) if row else None
        except (sqlite3.DatabaseError, ValueError):
            return None

    def clear(self):
        with self.write_lock, self.conn:
            self.conn.execute("DELETE FROM scan_results")
        logging.info("Cleared stored scan results")

    def _load_latest(self) -> Optional[ScanResult]:
        cur = self.conn.cursor()
        cur.execute("""
            SELECT id, scan_date, last_asset_date, total_assets_scanned
            FROM scan_results ORDER BY id DESC LIMIT 1
        """)
        header = cur.fetchone()
        if header is None:
            return None
        scan_id, scan_date, last_asset_date, total = header

        cur.execute("""
            SELECT group_id, item_id, asset_id, media_kind, pixel_width, pixel_height, duration,
                   byte_size, creation_date, latitude, longitude, device_make, device_model
            FROM group_items WHERE scan_id = ? ORDER BY group_id, position
        """, (scan_id,))
        items_by_group: Dict[str, List[DuplicateItem]] = {}
        for row in cur.fetchall():
            (group_id, item_id, asset_id, kind, width, height, duration,
             byte_size, created, lat, lon, make, model) = row
            asset = AssetRecord(
                identifier=asset_id,
                media_kind=MediaKind(kind),
                pixel_width=int(width),
                pixel_height=int(height),
                duration=float(duration),
                byte_size=int(byte_size),
                creation_date=_parse_dt(created),
                location=GeoLocation(lat, lon) if lat is not None and lon is not None else None,
                device_make=make,
                device_model=model,
            )
            items_by_group.setdefault(group_id, []).append(DuplicateItem.from_asset(asset, item_id=item_id))

        cur.execute("""
            SELECT id, similarity_type, match_confidence
            FROM duplicate_groups WHERE scan_id = ? ORDER BY position
        """, (scan_id,))
        groups = []
        for group_id, similarity, confidence in cur.fetchall():
            items = items_by_group.get(group_id)
            if not items:
                raise ScanResultCorruptError(f"Group {group_id} has no items")
            groups.append(DuplicateGroup(
                id=group_id,
                items=tuple(items),
                similarity_type=SimilarityType(similarity),
                match_confidence=float(confidence),
            ))

        return ScanResult(
            scan_date=_parse_dt(scan_date),
            groups=tuple(groups),
            total_assets_scanned=int(total),
            last_asset_date=_parse_dt(last_asset_date),
        )
