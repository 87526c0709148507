import copy
from typing import Any

import pytest

from catalog import Programme, build_catalog
from logic import (
    build_result_rows,
    compare_statistics,
    compute_deltas,
    evaluate_programme,
    format_delta,
    format_number,
    programme_url,
    score_breakdown,
)


def two_subject_catalog(
    year: str,
    has_stats: bool,
    weighting: dict,
    statistics: dict,
    last_year: str | None = None,
    alt_statistics: dict | None = None,
) -> Any:
    return build_catalog(
        {
            "year": year,
            "last_year": last_year,
            "has_stats": has_stats,
            "categories": ["core"],
            "default_category": "core",
            "subjects_by_category": {"core": ["ENG", "MATH"]},
            "conflicting_subjects": [],
            "grades": [{"subjects": ["ENG", "MATH"], "grades": {"S": 12.5, "A": 9, "B": 6, "C": 3}}],
            "max_grade": {"ENG": "S", "MATH": "S"},
            "programmes": {
                "ABC": [
                    {
                        "id": "UG001",
                        "requirement": {"op": "always"},
                        "weighting": weighting,
                        "statistics": statistics,
                        "alt_statistics": alt_statistics or {},
                    }
                ]
            },
        }
    )


def both_subjects() -> dict:
    return {"op": "require", "subjects": ["ENG", "MATH"], "of": {"op": "scores"}}


def test_delta_is_share_of_max_score() -> None:
    deltas = compute_deltas({"M": 12}, score=10, max_score=20)

    assert deltas == {"M": pytest.approx(10.0)}
    assert format_delta(deltas["M"]) == "+10%"
    assert format_delta(-12.0) == "-12%"
    assert format_delta(0.0) == "0%"


def test_evaluate_catalog_rows(catalog, science_profile) -> None:
    rows = {row["id"]: row for row in build_result_rows(catalog, science_profile)}

    ug001 = rows["UG001"]
    assert ug001["pass"] is True
    assert ug001["score"] == 24
    assert ug001["score_text"] == "24"
    assert ug001["max_score"] == 35
    assert ug001["mode"] == "present"
    assert ug001["remark"] == ""
    assert ug001["deltas"]["UQ"] == pytest.approx((30 - 24) / 35 * 100)
    assert ug001["deltas"]["M"] == pytest.approx((27 - 24) / 35 * 100)
    assert ug001["deltas"]["LQ"] == pytest.approx(0.0)
    assert ug001["M"] == ug001["deltas"]["M"]

    ug101 = rows["UG101"]
    assert ug101["pass"] is True
    assert ug101["score"] == 21
    assert ug101["scores"] == {"MATH": 12.0, "PHY": 5.0, "CHEM": 4.0}
    assert ug101["max_score"] == 28
    assert ug101["deltas"] == {"M": pytest.approx((22 - 21) / 28 * 100)}


def test_weighting_failure_overrides_requirement(catalog, science_profile) -> None:
    rows = {row["id"]: row for row in build_result_rows(catalog, science_profile)}
    row = rows["UG002"]

    assert row["pass"] is False
    assert row["score"] is None
    assert row["scores"] is None
    assert row["mode"] is None
    assert row["deltas"] == {}
    assert row["statistics"] == {}


def test_alternate_statistics_when_primary_empty(catalog, science_profile) -> None:
    profile = copy.deepcopy(science_profile)
    profile["subjects"]["BIO"] = "3"

    row = {r["id"]: r for r in build_result_rows(catalog, profile)}["UG002"]

    assert row["pass"] is True
    assert row["mode"] == "alt"
    assert row["remark"] == "^"
    assert row["statistics"] == {"M": 20}
    expected_score = 4 + 5 + 6 + 1 + 5 + 4 + 3
    assert row["score"] == expected_score
    assert row["deltas"]["M"] == pytest.approx((20 - expected_score) / row["max_score"] * 100)


def test_failed_requirement_shows_no_statistics(catalog) -> None:
    profile = {"id": "weak", "subjects": {"CHI": "2", "ENG": "5", "MATH": "5", "PHY": "5"}}

    row = {r["id"]: r for r in build_result_rows(catalog, profile)}["UG001"]

    assert row["pass"] is False
    assert row["mode"] is None
    assert row["UQ"] is None and row["M"] is None and row["LQ"] is None


def test_borrowed_statistics_from_prior_year() -> None:
    last_year = two_subject_catalog("2023", True, both_subjects(), {"M": 15})
    this_year = two_subject_catalog(
        "2024", False, {"op": "best", "n": 1, "of": {"op": "scores"}}, {}, last_year="2023"
    )
    profile = {"id": "p", "subjects": {"ENG": "A", "MATH": "A"}}

    [row] = build_result_rows(this_year, profile, last_year_catalog=last_year)

    assert last_year.find_programme("ABC", "UG001").max_score == 25
    assert row["mode"] == "last"
    assert row["remark"] == "#"
    assert row["last_year_score"] == 18
    assert row["deltas"]["M"] == pytest.approx(-12.0)
    assert row["statistics"] == {"M": 15}
    assert row["score"] == 9
    assert row["pass"] is True
    assert row["display_score"] == 18


def test_borrowed_mode_wins_over_alternate_statistics() -> None:
    last_year = two_subject_catalog("2023", True, both_subjects(), {"UQ": 21, "M": 15})
    this_year = two_subject_catalog(
        "2024", False, both_subjects(), {}, last_year="2023", alt_statistics={"M": 30}
    )
    profile = {"id": "p", "subjects": {"ENG": "A", "MATH": "A"}}

    [row] = build_result_rows(this_year, profile, last_year_catalog=last_year)

    assert row["mode"] == "last"
    assert row["remark"] == "#"
    assert row["statistics"] == {"UQ": 21, "M": 15}
    assert row["deltas"]["M"] == pytest.approx(-12.0)
    assert row["deltas"]["UQ"] == pytest.approx(12.0)

    [alone] = build_result_rows(this_year, profile)

    assert alone["mode"] == "alt"
    assert alone["remark"] == "^"
    assert alone["statistics"] == {"M": 30}


def test_prior_year_ignored_when_current_year_has_statistics() -> None:
    last_year = two_subject_catalog("2023", True, both_subjects(), {"M": 15})
    this_year = two_subject_catalog("2024", True, both_subjects(), {"M": 20}, last_year="2023")
    profile = {"id": "p", "subjects": {"ENG": "A", "MATH": "A"}}

    [row] = build_result_rows(this_year, profile, last_year_catalog=last_year)

    assert row["mode"] == "present"
    assert row["last_year_score"] is None
    assert row["deltas"]["M"] == pytest.approx((20 - 18) / 25 * 100)


def test_missing_prior_year_programme_falls_through() -> None:
    last_year = build_catalog(
        {
            "year": "2023",
            "has_stats": True,
            "categories": ["core"],
            "default_category": "core",
            "subjects_by_category": {"core": ["ENG", "MATH"]},
            "conflicting_subjects": [],
            "grades": [{"subjects": ["ENG", "MATH"], "grades": {"S": 12.5, "A": 9}}],
            "max_grade": {"ENG": "S", "MATH": "S"},
            "programmes": {"ABC": [{"id": "UG999", "statistics": {"M": 10}}]},
        }
    )
    this_year = two_subject_catalog("2024", False, both_subjects(), {"M": 20}, last_year="2023")
    profile = {"id": "p", "subjects": {"ENG": "A", "MATH": "B"}}

    [row] = build_result_rows(this_year, profile, last_year_catalog=last_year)

    assert row["mode"] == "present"
    assert row["last_year_score"] is None
    assert row["deltas"]["M"] == pytest.approx((20 - 15) / 25 * 100)


def test_borrowed_mode_without_prior_score_has_no_deltas() -> None:
    last_year = two_subject_catalog("2023", True, both_subjects(), {"M": 15})
    this_year = two_subject_catalog("2024", False, {"op": "scores"}, {}, last_year="2023")
    profile = {"id": "p", "subjects": {"ENG": "A"}}

    [row] = build_result_rows(this_year, profile, last_year_catalog=last_year)

    assert row["mode"] == "last"
    assert row["last_year_score"] is None
    assert row["deltas"] == {}
    assert row["statistics"] == {"M": 15}
    assert row["score"] == 9


def test_compare_statistics_without_max_score() -> None:
    programme = Programme(
        id="UG500",
        institution="ABC",
        map_grades=lambda subjects: {"ENG": 10.0},
        requirement=lambda mapped: True,
        weighting=lambda mapped: mapped,
        statistics={"M": 12.0},
        max_score=None,
    )
    evaluation = evaluate_programme(programme, {"ENG": "A"})

    assert evaluation.passed is True
    assert evaluation.score == 10
    assert compare_statistics(programme, evaluation, {"ENG": "A"}).mode is None


def test_max_score_bounds_every_profile(catalog) -> None:
    profiles = [
        {"CHI": "5**", "ENG": "5**", "MATH": "5**", "PHY": "5**", "CHEM": "5**", "BIO": "5**"},
        {"CHI": "3", "ENG": "3", "MATH": "2", "PHY": "4", "BIO": "1"},
        {"CHI": "5", "ENG": "4", "MATH": "5*", "PHY": "5", "M1": "5*", "CSD": "A"},
    ]
    for subjects in profiles:
        for programme in catalog.iter_programmes():
            result = evaluate_programme(programme, subjects)
            if result.score is not None:
                assert result.score <= programme.max_score


def test_evaluation_does_not_mutate_profile(catalog, science_profile) -> None:
    snapshot = copy.deepcopy(science_profile)

    build_result_rows(catalog, science_profile)

    assert science_profile == snapshot


def test_names_and_urls(catalog, science_profile) -> None:
    locale = {"Programme": {"UG001": "Bachelor of Science"}, "Institution": {"ABC": "ABC University"}}

    rows = build_result_rows(catalog, science_profile, locale=locale)
    first = rows[0]

    assert first["name"] == "Bachelor of Science"
    assert first["institution_name"] == "ABC University"
    assert first["url"] == "https://www.jupas.edu.hk/en/programme/abc/UG001"
    assert rows[1]["name"] == "UG002"
    assert [row["id"] for row in rows] == ["UG001", "UG002", "UG101"]


def test_programme_url_lowercases_institution_only() -> None:
    assert programme_url("HKUST", "JS5200") == "https://www.jupas.edu.hk/en/programme/hkust/JS5200"


def test_format_number_precision() -> None:
    assert format_number(24.0) == "24"
    assert format_number(1234.56) == "1,234.6"
    assert format_number(10.456, 2) == "10.46"
    assert format_number(-0.04) == "0"
    assert format_number(None) is None


def test_score_breakdown_follows_profile_order() -> None:
    subjects = {"ENG": "5", "CHI": "4", "BIO": ""}
    scores = {"CHI": 4.0, "ENG": 7.5}

    breakdown = score_breakdown(subjects, scores, {"Subject": {"ENG": "English Language"}})

    assert [item["subject"] for item in breakdown] == ["ENG", "CHI"]
    assert breakdown[0]["subject_name"] == "English Language"
    assert breakdown[0]["score_text"] == "7.5"
    assert breakdown[1]["subject_name"] == "CHI"
    assert score_breakdown(subjects, None) == []
