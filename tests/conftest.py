from __future__ import annotations

import copy
from typing import Any

import pytest

from catalog import build_catalog

DSE_GRADES = {"5**": 7, "5*": 6, "5": 5, "4": 4, "3": 3, "2": 2, "1": 1, "U": 0}
GRADED_SUBJECTS = ["CHI", "ENG", "MATH", "PHY", "CHEM", "BIO", "CSCI", "M1", "M2"]

RAW_CATALOG: dict[str, Any] = {
    "year": "2024",
    "last_year": None,
    "has_stats": True,
    "categories": ["core", "elective", "extended"],
    "default_category": "elective",
    "subjects_by_category": {
        "core": ["CHI", "ENG", "MATH", "CSD"],
        "elective": ["PHY", "CHEM", "BIO", "CSCI"],
        "extended": ["M1", "M2"],
    },
    "conflicting_subjects": [
        [["M1"], ["M2"]],
        [["PHY", "CHEM", "BIO"], ["CSCI"]],
    ],
    "grades": [
        {"subjects": GRADED_SUBJECTS, "grades": DSE_GRADES},
        {"subjects": ["CSD"], "grades": {"A": 1, "U": 0}},
    ],
    "max_grade": {**{subject: "5**" for subject in GRADED_SUBJECTS}, "CSD": "A"},
    "programmes": {
        "ABC": [
            {
                "id": "UG001",
                "study_areas": ["science"],
                "requirement": {
                    "op": "all",
                    "args": [
                        {"op": "at_least", "subject": "CHI", "value": 3},
                        {"op": "at_least", "subject": "ENG", "value": 3},
                        {"op": "at_least", "subject": "MATH", "value": 2},
                    ],
                },
                "weighting": {
                    "op": "best",
                    "n": 5,
                    "strict": True,
                    "of": {"op": "exclude", "subjects": ["CSD"], "of": {"op": "scores"}},
                },
                "statistics": {"UQ": 30, "M": 27, "LQ": 24},
            },
            {
                "id": "UG002",
                "study_areas": ["arts", "business"],
                "requirement": {"op": "always"},
                "weighting": {"op": "require", "subjects": ["BIO"], "of": {"op": "scores"}},
                "statistics": {},
                "alt_statistics": {"M": 20},
            },
        ],
        "XYZ": [
            {
                "id": "UG101",
                "study_areas": ["engineering"],
                "requirement": {
                    "op": "all",
                    "args": [
                        {"op": "at_least", "subject": "CHI", "value": 3},
                        {"op": "at_least", "subject": "ENG", "value": 3},
                        {"op": "at_least", "subject": "PHY", "value": 4},
                    ],
                },
                "weighting": {
                    "op": "merge",
                    "args": [
                        {"op": "weight", "weights": {"MATH": 2}, "of": {"op": "pick", "subjects": ["MATH"], "of": {"op": "scores"}}},
                        {
                            "op": "best",
                            "n": 2,
                            "of": {"op": "exclude", "subjects": ["CHI", "ENG", "MATH", "CSD"], "of": {"op": "scores"}},
                        },
                    ],
                },
                "statistics": {"M": 22},
            }
        ],
    },
}


@pytest.fixture
def raw_catalog() -> dict[str, Any]:
    return copy.deepcopy(RAW_CATALOG)


@pytest.fixture
def catalog(raw_catalog):
    return build_catalog(raw_catalog)


@pytest.fixture
def science_profile() -> dict[str, Any]:
    return {
        "id": "p1",
        "subjects": {"CHI": "4", "ENG": "5", "MATH": "5*", "CSD": "A", "PHY": "5", "CHEM": "4"},
    }
