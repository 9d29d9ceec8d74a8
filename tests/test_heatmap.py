import pytest

from commuteflow.intelligence.geo import GeoPoint
from commuteflow.intelligence.heatmap import (
    SEVERITY_SCALES, HeatmapGridBuilder, SeverityBucket, classify, validate_buckets
)
from commuteflow.intelligence.intensity import IntensitySample

from conftest import T0


def _sample(intensity, lat=52.0, lng=13.0):
    return IntensitySample(GeoPoint(lat, lng), T0, int(intensity * 10), intensity)


@pytest.mark.parametrize("intensity,expected", [
    (0.0, 'very-low'),
    (0.2, 'very-low'),
    (0.21, 'low'),
    (0.5, 'moderate'),
    (0.8, 'high'),
    (0.95, 'very-high'),
    (1.0, 'very-high'),
])
def test_five_band_classification(intensity, expected):
    assert classify(intensity, SEVERITY_SCALES['five_band']).name == expected


@pytest.mark.parametrize("intensity,expected", [
    (0.1, 'light'),
    (0.5, 'moderate'),
    (0.7, 'severe'),
])
def test_traffic_classification(intensity, expected):
    assert classify(intensity, SEVERITY_SCALES['traffic']).name == expected


def test_classify_rejects_out_of_range():
    with pytest.raises(ValueError):
        classify(1.5, SEVERITY_SCALES['five_band'])
    with pytest.raises(ValueError):
        classify(-0.1, SEVERITY_SCALES['five_band'])


def test_bucket_tables_must_cover_unit_interval():
    with pytest.raises(ValueError):
        validate_buckets([])
    with pytest.raises(ValueError):
        validate_buckets([SeverityBucket('a', 0.5, '#000'), SeverityBucket('b', 0.4, '#111')])
    with pytest.raises(ValueError):
        validate_buckets([SeverityBucket('a', 0.5, '#000')])

    for buckets in SEVERITY_SCALES.values():
        assert validate_buckets(buckets) == buckets


def test_heatmap_skips_empty_samples_and_flags_significant_ones():
    samples = [_sample(0.0), _sample(0.1, lng=13.01), _sample(0.4, lng=13.02), _sample(1.0, lng=13.03)]
    grid = HeatmapGridBuilder().build(samples)

    assert grid.points == [(52.0, 13.01, 0.1), (52.0, 13.02, 0.4), (52.0, 13.03, 1.0)]
    assert [(s.point.lng, b.name) for s, b in grid.flagged] == [(13.02, 'low'), (13.03, 'very-high')]


def test_heatmap_to_dict_shape():
    grid = HeatmapGridBuilder.for_scale('traffic').build([_sample(0.7)])
    data = grid.to_dict()

    assert data['points'] == [[52.0, 13.0, 0.7]]
    assert data['flagged'][0]['severity'] == 'severe'
    assert data['flagged'][0]['color'] == SEVERITY_SCALES['traffic'][-1].color
    assert data['flagged'][0]['estimated_time'] == T0


def test_builder_rejects_unknown_scale_and_threshold():
    with pytest.raises(ValueError):
        HeatmapGridBuilder.for_scale('rainbow')
    with pytest.raises(ValueError):
        HeatmapGridBuilder(threshold=1.2)


def test_empty_input_gives_empty_grid():
    grid = HeatmapGridBuilder().build([])
    assert grid.points == []
    assert grid.flagged == []
