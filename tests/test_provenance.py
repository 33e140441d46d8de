"""Provenance trail rendering."""
from __future__ import annotations

from dataset_explorer.analytics.models import PathSegment
from dataset_explorer.analytics.provenance import format_metric_path

PATH = [
    PathSegment(from_table="mutations", via_column="sample_id", to_table="samples", referenced_column="sample_id"),
    PathSegment(from_table="samples", via_column="patient_id", to_table="patients", referenced_column="patient_id"),
    PathSegment(from_table="patients", via_column="hospital_id", to_table="hospitals", referenced_column="hospital_id"),
]


class TestFormatMetricPath:
    def test_full_chain(self):
        assert format_metric_path(PATH, "hospitals") == (
            "Hospitals via mutations.sample_id → samples.patient_id → patients.hospital_id"
        )

    def test_parent_defaults_to_last_hop(self):
        assert format_metric_path(PATH[:1]) == "Samples via mutations.sample_id"

    def test_display_names(self):
        assert format_metric_path(PATH[:2], "patients", {"patients": "Study participants"}) == (
            "Study participants via mutations.sample_id → samples.patient_id"
        )

    def test_rows_have_no_trail(self):
        assert format_metric_path(None) is None
        assert format_metric_path([]) is None
