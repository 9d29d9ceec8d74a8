"""
Proximity Grid Index
Fixed-resolution lat/lng cell grid over timestamped route points
- Rows of constant latitude height, columns scaled by cos(latitude)
- O(1) amortized insert, no rebalancing
- Radius queries scan the cells overlapping the search circle's bounding box,
  or every occupied cell when that box is larger than the occupied grid
- Exact haversine filter on candidates (inclusive boundary)
"""

import math
import logging
from collections import defaultdict
from threading import Lock
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .errors import EmptyQuery
from .geo import EARTH_RADIUS_M, GeoPoint, TimestampedPoint, haversine_m


logger = logging.getLogger(__name__)

Cell = Tuple[int, int]

# widens the bounding box so float noise never costs a boundary match
_BBOX_EPSILON_DEG = 1e-9


class ProximityIndex:
    DEFAULT_CELL_SIZE_M = 500

    def __init__(self, cell_size_m: float = DEFAULT_CELL_SIZE_M):
        if cell_size_m <= 0:
            raise ValueError("cell_size_m must be positive")

        self.cell_size_m = float(cell_size_m)
        self.lat_step = math.degrees(self.cell_size_m / EARTH_RADIUS_M)
        self.row_count = max(1, math.ceil(180.0 / self.lat_step))

        self.cells: Dict[Cell, List[TimestampedPoint]] = defaultdict(list)
        self._cols_per_row: Dict[int, int] = {}
        self._lock = Lock()
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def _row_for_lat(self, lat: float) -> int:
        row = int((lat + 90.0) / self.lat_step)
        return min(max(row, 0), self.row_count - 1)

    def _cols_for_row(self, row: int) -> int:
        cols = self._cols_per_row.get(row)
        if cols is not None:
            return cols

        center_lat = min(90.0, -90.0 + (row + 0.5) * self.lat_step)
        metres_per_deg = EARTH_RADIUS_M * math.radians(1) * math.cos(math.radians(center_lat))
        cols = max(1, int(360.0 * metres_per_deg / self.cell_size_m))
        self._cols_per_row[row] = cols
        return cols

    def _col_for_lng(self, lng: float, cols: int) -> int:
        width = 360.0 / cols
        return int(math.floor((lng + 180.0) / width)) % cols

    def cell_for(self, lat: float, lng: float) -> Cell:
        row = self._row_for_lat(lat)
        return (row, self._col_for_lng(lng, self._cols_for_row(row)))

    def insert(self, point: TimestampedPoint) -> Cell:
        cell = self.cell_for(point.lat, point.lng)
        with self._lock:
            self.cells[cell].append(point)
            self._size += 1
        return cell

    def insert_many(self, points: Iterable[TimestampedPoint]) -> int:
        keyed = [(self.cell_for(p.lat, p.lng), p) for p in points]
        with self._lock:
            for cell, point in keyed:
                self.cells[cell].append(point)
            self._size += len(keyed)
        return len(keyed)

    def _drop_route_locked(self, route_id: str) -> int:
        removed = 0
        for cell in list(self.cells.keys()):
            bucket = self.cells[cell]
            kept = [p for p in bucket if p.route_id != route_id]
            if len(kept) == len(bucket):
                continue
            removed += len(bucket) - len(kept)
            # readers may still hold the old list; swap instead of mutating
            if kept:
                self.cells[cell] = kept
            else:
                del self.cells[cell]
        self._size -= removed
        return removed

    def remove_route(self, route_id: str) -> int:
        with self._lock:
            removed = self._drop_route_locked(route_id)

        if removed:
            logger.debug("Removed %d points of route %s from index", removed, route_id)
        return removed

    def replace_route(self, route_id: str, points: Iterable[TimestampedPoint]) -> int:
        """Swap a route's points in one critical section; returns the number removed."""
        keyed = [(self.cell_for(p.lat, p.lng), p) for p in points]
        with self._lock:
            removed = self._drop_route_locked(route_id)
            for cell, point in keyed:
                self.cells[cell].append(point)
            self._size += len(keyed)
        return removed

    def clear(self):
        with self._lock:
            self.cells = defaultdict(list)
            self._size = 0

    def _row_span(self, center: GeoPoint, radius_m: float) -> Tuple[int, int, float]:
        angular = radius_m / EARTH_RADIUS_M
        radius_deg = math.degrees(angular) + _BBOX_EPSILON_DEG

        lat_min = center.lat - radius_deg
        lat_max = center.lat + radius_deg

        full_width = angular >= math.pi / 2 or lat_max >= 90.0 or lat_min <= -90.0
        if full_width:
            half_width = 180.0
        else:
            ratio = math.sin(angular) / math.cos(math.radians(center.lat))
            half_width = math.degrees(math.asin(min(1.0, ratio))) + _BBOX_EPSILON_DEG

        first = self._row_for_lat(max(lat_min, -90.0))
        last = self._row_for_lat(min(lat_max, 90.0))
        return first, last, half_width

    def _cols_in_row(self, row: int, center_lng: float, half_width: float) -> Tuple[int, int, int]:
        cols = self._cols_for_row(row)
        if half_width >= 180.0:
            return cols, 0, cols - 1

        width = 360.0 / cols
        start = int(math.floor((center_lng - half_width + 180.0) / width))
        end = int(math.floor((center_lng + half_width + 180.0) / width))
        if end - start + 1 >= cols:
            return cols, 0, cols - 1
        return cols, start, end

    def candidate_cells(self, center: GeoPoint, radius_m: float,
                        limit: Optional[int] = None) -> Optional[Set[Cell]]:
        """
        Cells overlapping the search circle's bounding box.
        Returns None once the box would hold more than `limit` cells.
        """
        first, last, half_width = self._row_span(center, radius_m)

        counted = 0
        spans = []
        for row in range(first, last + 1):
            cols, start, end = self._cols_in_row(row, center.lng, half_width)
            counted += end - start + 1
            if limit is not None and counted > limit:
                return None
            spans.append((row, cols, start, end))

        cells: Set[Cell] = set()
        for row, cols, start, end in spans:
            cells.update((row, col % cols) for col in range(start, end + 1))
        return cells

    def query(self, center: GeoPoint, radius_m: float) -> List[TimestampedPoint]:
        if radius_m is None or not math.isfinite(radius_m) or radius_m <= 0:
            raise EmptyQuery(f"radius must be a positive number, got {radius_m}")

        cells = self.cells
        candidates = self.candidate_cells(center, radius_m, limit=len(cells))
        if candidates is None:
            # box wider than the occupied grid: scan what is there
            buckets = list(cells.values())
        else:
            buckets = [cells.get(cell) for cell in candidates]

        matches = []
        for bucket in buckets:
            if not bucket:
                continue
            for point in list(bucket):
                if haversine_m(center.lat, center.lng, point.lat, point.lng) <= radius_m:
                    matches.append(point)

        return matches

    def get_stats(self) -> Dict:
        used = [b for b in list(self.cells.values()) if b]
        return {
            'points': self._size,
            'cell_size_m': self.cell_size_m,
            'cells_used': len(used),
            'max_cell_points': max((len(b) for b in used), default=0),
        }
