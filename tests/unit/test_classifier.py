from __future__ import annotations

import pytest

from cutoff_portal.excel.classifier import (
    CLASSIFIERS,
    cell_text,
    classify_cell,
    is_category,
    is_college,
    is_course,
    is_grand_total,
    is_quota,
    is_rank,
)
from cutoff_portal.models.cutoff_record import ClassificationLabel


def test_rank_requires_whole_cell_digits():
    assert is_rank("123")
    assert not is_rank("123A")
    assert not is_rank("12 3")
    assert not is_rank("")


def test_rank_accepts_numeric_cells():
    assert is_rank(450)
    assert is_rank(450.0)  # integral float from the reader
    assert not is_rank(450.5)


@pytest.mark.parametrize(
    "value",
    ["XYZ MEDICAL COLLEGE", "Institute of Dental Sciences", "City Hospital", "Rajiv Gandhi University"],
)
def test_college_names(value):
    assert is_college(value)
    assert classify_cell(value) is ClassificationLabel.COLLEGE


@pytest.mark.parametrize("value", ["MBBS", "BDS", "M.D. (PAEDIATRICS)", "M.S. (ENT)", "MDS", "DIPLOMA IN CHILD HEALTH"])
def test_course_names(value):
    assert is_course(value)


def test_category_and_quota_overlap():
    # "SC" satisfies both predicates; the ranked order puts category first
    assert is_category("SC") and is_quota("SC")
    assert classify_cell("SC") is ClassificationLabel.CATEGORY


def test_quota_only_labels():
    assert is_quota("MANAGEMENT")
    assert not is_category("MANAGEMENT")
    assert classify_cell("MANAGEMENT") is ClassificationLabel.QUOTA
    assert classify_cell("ALL INDIA") is ClassificationLabel.QUOTA


def test_ranked_order_is_fixed():
    labels = [label for label, _ in CLASSIFIERS]
    assert labels == [
        ClassificationLabel.COLLEGE,
        ClassificationLabel.COURSE,
        ClassificationLabel.CATEGORY,
        ClassificationLabel.QUOTA,
        ClassificationLabel.RANK,
    ]


def test_college_wins_over_course():
    # "MEDICAL" + "MBBS" in one cell
    assert classify_cell("MBBS - GOVT MEDICAL COLLEGE") is ClassificationLabel.COLLEGE


def test_rank_and_unknown():
    assert classify_cell("101") is ClassificationLabel.RANK
    assert classify_cell(101) is ClassificationLabel.RANK
    assert classify_cell("remarks") is ClassificationLabel.UNKNOWN
    assert classify_cell(None) is ClassificationLabel.UNKNOWN
    assert classify_cell("   ") is ClassificationLabel.UNKNOWN


def test_grand_total_in_any_cell():
    assert is_grand_total(["GRAND TOTAL", 500])
    assert is_grand_total([None, "grand total"])
    assert not is_grand_total(["TOTAL", 500])


def test_cell_text():
    assert cell_text(None) == ""
    assert cell_text(12.0) == "12"
    assert cell_text("  MBBS ") == "MBBS"
