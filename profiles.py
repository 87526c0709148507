from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from typing import Any

from catalog import Catalog


@dataclass(frozen=True)
class SubjectRow:
    category: str
    subject: str
    subject_list: tuple[str, ...]
    grade: str
    grade_list: tuple[str, ...]


@dataclass
class RowErrors:
    # category_error is not set by any rule yet; kept so callers can render it.
    category_error: bool = False
    subject_error: bool = False
    grade_error: bool = False

    def any(self) -> bool:
        return self.category_error or self.subject_error or self.grade_error


def new_profile_id() -> str:
    return uuid.uuid4().hex


def create_profile(catalog: Catalog, profile_id: str | None = None) -> dict[str, Any]:
    return {
        "id": profile_id or new_profile_id(),
        "subjects": {subject: "" for subject in catalog.core_subjects},
    }


def _row_for(catalog: Catalog, category: str, subject: str, grade: str = "") -> SubjectRow:
    return SubjectRow(
        category=category,
        subject=subject,
        subject_list=tuple(catalog.subjects_by_category.get(category, [])),
        grade=grade,
        grade_list=tuple(catalog.grade_list_map.get(subject, [])),
    )


def to_subject_rows(catalog: Catalog, subjects: dict[str, str]) -> list[SubjectRow]:
    return [
        _row_for(catalog, catalog.category_map.get(subject, ""), subject, grade)
        for subject, grade in subjects.items()
    ]


def add_subject_row(catalog: Catalog, rows: list[SubjectRow]) -> list[SubjectRow]:
    category = catalog.default_category
    subject = catalog.subjects_by_category[category][0]
    return [*rows, _row_for(catalog, category, subject)]


def remove_subject_row(rows: list[SubjectRow], index: int) -> list[SubjectRow]:
    return [row for i, row in enumerate(rows) if i != index]


def change_category(catalog: Catalog, row: SubjectRow, category: str) -> SubjectRow:
    if row.category == category:
        return row
    subject = catalog.subjects_by_category[category][0]
    return _row_for(catalog, category, subject)


def change_subject(catalog: Catalog, row: SubjectRow, subject: str) -> SubjectRow:
    category = catalog.category_map.get(subject)
    if not category or category != row.category:
        return row
    grade_list = tuple(catalog.grade_list_map.get(subject, []))
    if grade_list != row.grade_list:
        grade = row.grade if row.grade in grade_list else ""
        return replace(row, subject=subject, grade_list=grade_list, grade=grade)
    return replace(row, subject=subject)


def change_grade(row: SubjectRow, grade: str) -> SubjectRow:
    return replace(row, grade=grade)


def update_row(rows: list[SubjectRow], index: int, row: SubjectRow) -> list[SubjectRow]:
    return [row if i == index else existing for i, existing in enumerate(rows)]


def rows_to_profile(profile_id: str, rows: list[SubjectRow]) -> dict[str, Any]:
    return {"id": profile_id, "subjects": {row.subject: row.grade for row in rows}}


def get_row_errors(rows: list[SubjectRow], conflicts: list[tuple[list[str], list[str]]]) -> list[RowErrors]:
    output = [RowErrors(grade_error=not row.grade) for row in rows]

    positions: dict[str, list[int]] = {}
    for index, row in enumerate(rows):
        positions.setdefault(row.subject, []).append(index)

    for indexes in positions.values():
        if len(indexes) > 1:
            for index in indexes:
                output[index].subject_error = True

    for left, right in conflicts:
        hits_left = [i for subject in left for i in positions.get(subject, [])]
        hits_right = [i for subject in right for i in positions.get(subject, [])]
        if hits_left and hits_right:
            for index in hits_left + hits_right:
                output[index].subject_error = True

    return output


def has_error(errors: list[RowErrors]) -> bool:
    return any(item.any() for item in errors)


def validate_profile(catalog: Catalog, profile: dict[str, Any]) -> list[RowErrors]:
    rows = to_subject_rows(catalog, profile.get("subjects") or {})
    return get_row_errors(rows, catalog.conflicting_subjects)


def profile_needs_attention(catalog: Catalog, profile: dict[str, Any]) -> bool:
    return has_error(validate_profile(catalog, profile))
