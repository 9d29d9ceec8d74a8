"""
Heat Map Assembly
Packages scored route samples for a renderer
- (lat, lng, intensity) triples for every sample with traffic
- Severity classification for samples above the significance threshold
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from .intensity import IntensitySample


@dataclass(frozen=True)
class SeverityBucket:
    name: str
    upper: float
    color: str

    def to_dict(self) -> dict:
        return {'name': self.name, 'upper': self.upper, 'color': self.color}


SEVERITY_SCALES: Dict[str, Tuple[SeverityBucket, ...]] = {
    'five_band': (
        SeverityBucket('very-low', 0.2, '#2ecc71'),
        SeverityBucket('low', 0.4, '#a3d977'),
        SeverityBucket('moderate', 0.6, '#f1c40f'),
        SeverityBucket('high', 0.8, '#e67e22'),
        SeverityBucket('very-high', 1.0, '#e74c3c'),
    ),
    'traffic': (
        SeverityBucket('light', 0.33, '#4caf50'),
        SeverityBucket('moderate', 0.66, '#ff9800'),
        SeverityBucket('severe', 1.0, '#f44336'),
    ),
}

DEFAULT_SCALE = 'five_band'


def validate_buckets(buckets: Sequence[SeverityBucket]) -> Tuple[SeverityBucket, ...]:
    if not buckets:
        raise ValueError("Severity table must have at least one bucket")

    previous = None
    for bucket in buckets:
        if bucket.upper < 0 or bucket.upper > 1:
            raise ValueError(f"Bucket {bucket.name} upper bound {bucket.upper} outside [0, 1]")
        if previous is not None and bucket.upper <= previous.upper:
            raise ValueError(f"Bucket {bucket.name} overlaps {previous.name}")
        previous = bucket

    if buckets[-1].upper != 1.0:
        raise ValueError("Severity table must cover intensities up to 1.0")
    return tuple(buckets)


def classify(intensity: float, buckets: Sequence[SeverityBucket]) -> SeverityBucket:
    if intensity < 0 or intensity > 1:
        raise ValueError(f"Intensity {intensity} outside [0, 1]")
    for bucket in buckets:
        if bucket.upper >= intensity:
            return bucket
    return buckets[-1]


@dataclass
class HeatmapGrid:
    points: List[Tuple[float, float, float]] = field(default_factory=list)
    flagged: List[Tuple[IntensitySample, SeverityBucket]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'points': [list(p) for p in self.points],
            'flagged': [
                {
                    'lat': sample.point.lat,
                    'lng': sample.point.lng,
                    'estimated_time': sample.estimated_time,
                    'raw_count': sample.raw_count,
                    'intensity': sample.normalized_intensity,
                    'severity': bucket.name,
                    'color': bucket.color,
                }
                for sample, bucket in self.flagged
            ],
        }


class HeatmapGridBuilder:
    SIGNIFICANCE_THRESHOLD = 0.4

    def __init__(self, buckets: Sequence[SeverityBucket] = SEVERITY_SCALES[DEFAULT_SCALE],
                 threshold: float = SIGNIFICANCE_THRESHOLD):
        if threshold < 0 or threshold > 1:
            raise ValueError("threshold must lie in [0, 1]")
        self.buckets = validate_buckets(buckets)
        self.threshold = threshold

    @classmethod
    def for_scale(cls, scale: str, threshold: float = SIGNIFICANCE_THRESHOLD) -> 'HeatmapGridBuilder':
        if scale not in SEVERITY_SCALES:
            raise ValueError(f"Unknown severity scale: {scale}")
        return cls(SEVERITY_SCALES[scale], threshold)

    def build(self, samples: Sequence[IntensitySample]) -> HeatmapGrid:
        grid = HeatmapGrid()
        for sample in samples:
            intensity = sample.normalized_intensity
            if intensity <= 0:
                continue
            grid.points.append((sample.point.lat, sample.point.lng, intensity))
            if intensity >= self.threshold:
                grid.flagged.append((sample, classify(intensity, self.buckets)))
        return grid
