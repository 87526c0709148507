from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from catalog import STAT_KEYS, Catalog, Programme, label
from formulas import SubjectGrades, SubjectScores

logger = logging.getLogger(__name__)

PROGRAMME_URL = "https://www.jupas.edu.hk/en/programme/{institution}/{programme_id}"

MODE_PRESENT = "present"
MODE_ALT = "alt"
MODE_LAST = "last"
REMARKS = {MODE_ALT: "^", MODE_LAST: "#"}


@dataclass
class Evaluation:
    passed: bool
    score: float | None
    scores: SubjectScores | None


@dataclass
class Comparison:
    mode: str | None
    statistics: dict[str, float] = field(default_factory=dict)
    deltas: dict[str, float] = field(default_factory=dict)
    last_year: Evaluation | None = None


def format_number(value: float | None, precision: int = 1) -> str | None:
    if value is None:
        return None
    text = f"{round(value, precision):,.{precision}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def format_delta(delta: float, precision: int = 0) -> str:
    sign = "+" if delta > 0 else ""
    return f"{sign}{format_number(delta, precision)}%"


def programme_url(institution: str, programme_id: str) -> str:
    return PROGRAMME_URL.format(institution=institution.lower(), programme_id=programme_id)


def evaluate_programme(programme: Programme, subjects: SubjectGrades) -> Evaluation:
    mapped = programme.map_grades(subjects)
    passed = bool(programme.requirement(mapped))
    scores = programme.weighting(mapped) if passed else None
    score = sum(scores.values()) if scores is not None else None
    # A passed requirement without a usable weighting is not a pass.
    return Evaluation(passed=passed and scores is not None, score=score, scores=scores)


def compute_deltas(statistics: dict[str, float], score: float, max_score: float) -> dict[str, float]:
    return {key: (value - score) / max_score * 100 for key, value in statistics.items() if key in STAT_KEYS}


def compare_statistics(
    programme: Programme,
    evaluation: Evaluation,
    subjects: SubjectGrades,
    has_stats: bool = True,
    last_year_programme: Programme | None = None,
) -> Comparison:
    if not has_stats and last_year_programme is not None:
        last = evaluate_programme(last_year_programme, subjects)
        deltas: dict[str, float] = {}
        if last.score is not None and last_year_programme.max_score:
            deltas = compute_deltas(last_year_programme.statistics, last.score, last_year_programme.max_score)
        return Comparison(
            mode=MODE_LAST,
            statistics=dict(last_year_programme.statistics),
            deltas=deltas,
            last_year=last,
        )

    if evaluation.score is None or not programme.max_score:
        return Comparison(mode=None)

    if programme.statistics:
        return Comparison(
            mode=MODE_PRESENT,
            statistics=dict(programme.statistics),
            deltas=compute_deltas(programme.statistics, evaluation.score, programme.max_score),
        )
    if programme.alt_statistics:
        return Comparison(
            mode=MODE_ALT,
            statistics=dict(programme.alt_statistics),
            deltas=compute_deltas(programme.alt_statistics, evaluation.score, programme.max_score),
        )
    return Comparison(mode=None)


def score_breakdown(
    subjects: SubjectGrades,
    scores: SubjectScores | None,
    locale: dict[str, dict[str, str]] | None = None,
) -> list[dict[str, Any]]:
    if not scores:
        return []
    return [
        {
            "subject": subject,
            "subject_name": label(locale, "Subject", subject),
            "grade": grade,
            "score": scores[subject],
            "score_text": format_number(scores[subject], 2),
        }
        for subject, grade in subjects.items()
        if subject in scores
    ]


def build_result_row(
    programme: Programme,
    subjects: SubjectGrades,
    has_stats: bool = True,
    last_year_programme: Programme | None = None,
    locale: dict[str, dict[str, str]] | None = None,
) -> dict[str, Any]:
    evaluation = evaluate_programme(programme, subjects)
    comparison = compare_statistics(programme, evaluation, subjects, has_stats, last_year_programme)
    last = comparison.last_year

    row = {
        "id": programme.id,
        "institution": programme.institution,
        "name": label(locale, "Programme", programme.id),
        "institution_name": label(locale, "Institution", programme.institution),
        "url": programme_url(programme.institution, programme.id),
        "study_areas": list(programme.study_areas),
        "max_score": programme.max_score,
        "pass": evaluation.passed,
        "score": evaluation.score,
        "score_text": format_number(evaluation.score),
        "scores": evaluation.scores,
        "last_year_score": last.score if last else None,
        "last_year_score_text": format_number(last.score) if last else None,
        "last_year_scores": last.scores if last else None,
        "mode": comparison.mode,
        "remark": REMARKS.get(comparison.mode or "", ""),
        "statistics": comparison.statistics,
        "deltas": comparison.deltas,
    }
    row["display_score"] = row["last_year_score"] if comparison.mode == MODE_LAST else row["score"]
    for key in STAT_KEYS:
        row[key] = comparison.deltas.get(key)
    return row


def build_result_rows(
    catalog: Catalog,
    profile: dict[str, Any],
    locale: dict[str, dict[str, str]] | None = None,
    last_year_catalog: Catalog | None = None,
) -> list[dict[str, Any]]:
    subjects = dict(profile.get("subjects") or {})
    borrow = last_year_catalog if not catalog.has_stats else None

    rows: list[dict[str, Any]] = []
    for programme in catalog.iter_programmes():
        last_year_programme = borrow.find_programme(programme.institution, programme.id) if borrow else None
        rows.append(build_result_row(programme, subjects, catalog.has_stats, last_year_programme, locale))

    logger.debug(
        "Evaluated %d programmes for profile %s (%d passed)",
        len(rows),
        profile.get("id"),
        sum(1 for row in rows if row["pass"]),
    )
    return rows
