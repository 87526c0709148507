from __future__ import annotations

import json
import logging
import os
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator

from formulas import (
    PredicateFn,
    ScoreFn,
    SubjectGrades,
    SubjectScores,
    compile_grade_mapping,
    compile_predicate,
    compile_score,
)

logger = logging.getLogger(__name__)

DEFAULT_DATA_ROOT = Path(__file__).resolve().parent / "data"
STAT_KEYS = ("UQ", "M", "LQ")
FALLBACK_LANGUAGE = "en"
LOCALE_SECTIONS = ("Programme", "Institution", "StudyArea", "Subject", "SubjectCategory", "UI")

REQUIRED_CATALOG_KEYS = {
    "year",
    "has_stats",
    "subjects_by_category",
    "categories",
    "default_category",
    "conflicting_subjects",
    "grades",
    "max_grade",
    "programmes",
}


class CatalogError(ValueError):
    pass


@dataclass(frozen=True)
class Programme:
    id: str
    institution: str
    map_grades: Callable[[SubjectGrades], SubjectScores]
    requirement: PredicateFn
    weighting: ScoreFn
    study_areas: tuple[str, ...] = ()
    statistics: dict[str, float] = field(default_factory=dict)
    alt_statistics: dict[str, float] = field(default_factory=dict)
    max_score: float | None = None


@dataclass(frozen=True)
class Catalog:
    year: str
    last_year: str | None
    has_stats: bool
    subjects_by_category: dict[str, list[str]]
    categories: list[str]
    default_category: str
    conflicting_subjects: list[tuple[list[str], list[str]]]
    max_grade: SubjectGrades
    programmes: dict[str, list[Programme]]
    grade_map: dict[str, dict[str, float]]
    grade_list_map: dict[str, list[str]]
    category_map: dict[str, str]
    institution_map: dict[str, str]

    @property
    def institutions(self) -> list[str]:
        return list(self.programmes)

    @property
    def subjects(self) -> list[str]:
        return [subject for subjects in self.subjects_by_category.values() for subject in subjects]

    @property
    def core_subjects(self) -> list[str]:
        return list(self.subjects_by_category.get("core", []))

    @property
    def study_areas(self) -> list[str]:
        return sorted({area for programme in self.iter_programmes() for area in programme.study_areas})

    def iter_programmes(self) -> Iterator[Programme]:
        for programmes in self.programmes.values():
            yield from programmes

    def find_programme(self, institution: str, programme_id: str) -> Programme | None:
        for programme in self.programmes.get(institution, []):
            if programme.id == programme_id:
                return programme
        return None


def validate_catalog_keys(raw: dict[str, Any]) -> tuple[bool, list[str]]:
    missing = sorted(REQUIRED_CATALOG_KEYS - set(raw))
    return len(missing) == 0, missing


def _parse_statistics(value: Any) -> dict[str, float]:
    if not isinstance(value, dict):
        return {}
    return {key: float(value[key]) for key in STAT_KEYS if value.get(key) is not None}


def _score_total(scores: SubjectScores | None) -> float | None:
    if scores is None:
        return None
    return sum(scores.values())


def _build_grade_tables(grades: list[dict[str, Any]]) -> tuple[dict[str, dict[str, float]], dict[str, list[str]]]:
    grade_map: dict[str, dict[str, float]] = {}
    grade_list_map: dict[str, list[str]] = {}
    for entry in grades:
        table = {str(label): float(value) for label, value in (entry.get("grades") or {}).items()}
        ordered = sorted(table, key=lambda label: table[label], reverse=True)
        for subject in entry.get("subjects") or []:
            grade_map[subject] = table
            grade_list_map[subject] = ordered
    return grade_map, grade_list_map


def build_programme(
    raw: dict[str, Any],
    institution: str,
    grade_map: dict[str, dict[str, float]],
    max_grade: SubjectGrades,
) -> Programme:
    programme_id = raw.get("id")
    if not programme_id:
        raise CatalogError(f"Programme without id under institution {institution}")
    try:
        map_grades = compile_grade_mapping(raw.get("map_grades"), grade_map)
        requirement = compile_predicate(raw.get("requirement") or {"op": "always"})
        weighting = compile_score(raw.get("weighting") or {"op": "scores"})
    except ValueError as exc:
        raise CatalogError(f"Invalid formula for programme {programme_id}: {exc}") from exc

    # The max-grade profile always meets the bar, so only the weighting is run.
    max_score = _score_total(weighting(map_grades(max_grade)))
    return Programme(
        id=str(programme_id),
        institution=institution,
        map_grades=map_grades,
        requirement=requirement,
        weighting=weighting,
        study_areas=tuple(raw.get("study_areas") or []),
        statistics=_parse_statistics(raw.get("statistics")),
        alt_statistics=_parse_statistics(raw.get("alt_statistics")),
        max_score=max_score or None,
    )


def build_catalog(raw: dict[str, Any]) -> Catalog:
    valid, missing = validate_catalog_keys(raw)
    if not valid:
        raise CatalogError(f"Missing required catalog keys: {missing}")

    grade_map, grade_list_map = _build_grade_tables(raw["grades"])
    max_grade = {str(k): str(v) for k, v in raw["max_grade"].items()}
    for subject, grade in max_grade.items():
        if grade not in grade_map.get(subject, {}):
            raise CatalogError(f"Max grade {grade!r} is not on the grade scale of {subject}")

    category_map: dict[str, str] = {}
    for category, subjects in raw["subjects_by_category"].items():
        for subject in subjects:
            category_map[subject] = category

    conflicts: list[tuple[list[str], list[str]]] = []
    for pair in raw["conflicting_subjects"]:
        if len(pair) != 2:
            raise CatalogError(f"Conflict entry must have exactly two sides: {pair!r}")
        left, right = list(pair[0]), list(pair[1])
        unknown = [s for s in left + right if s not in category_map]
        if unknown:
            logger.warning("Conflict pair references unknown subjects: %s", unknown)
        conflicts.append((left, right))

    programmes: dict[str, list[Programme]] = {}
    institution_map: dict[str, str] = {}
    for institution, items in raw["programmes"].items():
        programmes[institution] = []
        for item in items:
            programme = build_programme(item, institution, grade_map, max_grade)
            programmes[institution].append(programme)
            institution_map[programme.id] = institution

    catalog = Catalog(
        year=str(raw["year"]),
        last_year=str(raw["last_year"]) if raw.get("last_year") else None,
        has_stats=bool(raw["has_stats"]),
        subjects_by_category={k: list(v) for k, v in raw["subjects_by_category"].items()},
        categories=list(raw["categories"]),
        default_category=raw["default_category"],
        conflicting_subjects=conflicts,
        max_grade=max_grade,
        programmes=programmes,
        grade_map=grade_map,
        grade_list_map=grade_list_map,
        category_map=category_map,
        institution_map=institution_map,
    )
    logger.debug("Built catalog %s with %d programmes", catalog.year, len(institution_map))
    return catalog


def data_root_from_env() -> Path:
    value = os.getenv("ADMISSION_DATA_PATH", "").strip()
    return Path(value) if value else DEFAULT_DATA_ROOT


def available_years(data_root: Path) -> list[str]:
    if not data_root.is_dir():
        return []
    return sorted(p.name for p in data_root.iterdir() if (p / "main.json").is_file())


def resolve_year(year: str, data_root: Path) -> str:
    if year != "latest":
        return year
    years = available_years(data_root)
    if not years:
        raise CatalogError(f"No catalog years found under {data_root}")
    return years[-1]


def load_catalog(year: str, data_root: Path | None = None) -> Catalog:
    root = data_root or data_root_from_env()
    resolved = resolve_year(year, root)
    path = root / resolved / "main.json"
    if not path.is_file():
        raise CatalogError(f"Catalog file not found: {path}")
    raw = json.loads(path.read_text(encoding="utf-8"))
    return build_catalog(raw)


def load_locale(year: str, language: str, data_root: Path | None = None) -> dict[str, dict[str, str]]:
    root = data_root or data_root_from_env()

    def _read(lang: str) -> dict[str, Any]:
        path = root / year / f"{lang}.json"
        if not path.is_file():
            return {}
        return json.loads(path.read_text(encoding="utf-8"))

    primary = _read(language)
    fallback = _read(FALLBACK_LANGUAGE) if language != FALLBACK_LANGUAGE else {}
    merged: dict[str, dict[str, str]] = {}
    for section in LOCALE_SECTIONS:
        merged[section] = {**(fallback.get(section) or {}), **(primary.get(section) or {})}
    return merged


def label(locale: dict[str, dict[str, str]] | None, section: str, key: str) -> str:
    if not locale:
        return key
    return (locale.get(section) or {}).get(key) or key


class CatalogCache:
    """Per admission year catalog cache with least-recently-used eviction."""

    def __init__(
        self,
        data_root: Path | None = None,
        max_entries: int = 4,
        loader: Callable[[str, Path], Catalog] | None = None,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.data_root = data_root or data_root_from_env()
        self.max_entries = max_entries
        self._loader = loader or load_catalog
        self._entries: OrderedDict[str, Catalog] = OrderedDict()

    def __contains__(self, year: str) -> bool:
        return year in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, year: str) -> Catalog:
        resolved = resolve_year(year, self.data_root)
        cached = self._entries.get(resolved)
        if cached is not None:
            self._entries.move_to_end(resolved)
            return cached

        logger.info("Loading catalog for %s from %s", resolved, self.data_root)
        catalog = self._loader(resolved, self.data_root)
        self._entries[resolved] = catalog
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted catalog %s", evicted)
        return catalog

    def get_last_year(self, catalog: Catalog) -> Catalog | None:
        if not catalog.last_year:
            return None
        try:
            return self.get(catalog.last_year)
        except CatalogError as exc:
            logger.warning("Prior-year catalog %s unavailable: %s", catalog.last_year, exc)
            return None

    def evict(self, year: str) -> None:
        self._entries.pop(year, None)

    def clear(self) -> None:
        self._entries.clear()
