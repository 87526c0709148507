from __future__ import annotations

from typing import Any, Callable

SubjectGrades = dict[str, str]
SubjectScores = dict[str, float]
ScoreFn = Callable[[SubjectScores], "SubjectScores | None"]
PredicateFn = Callable[[SubjectScores], bool]


class FormulaError(ValueError):
    pass


def _require_key(doc: dict[str, Any], name: str) -> Any:
    if name not in doc:
        raise FormulaError(f"Operator '{doc.get('op')}' requires '{name}'")
    return doc[name]


def _subject_list(doc: dict[str, Any], name: str = "subjects") -> list[str]:
    value = _require_key(doc, name)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise FormulaError(f"Operator '{doc.get('op')}' expects '{name}' to be a list of subject ids")
    return list(value)


def _number(doc: dict[str, Any], name: str, default: Any = None) -> float:
    value = doc.get(name, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FormulaError(f"Operator '{doc.get('op')}' expects numeric '{name}'")
    return float(value)


def _op(doc: Any) -> str:
    if not isinstance(doc, dict) or not isinstance(doc.get("op"), str):
        raise FormulaError(f"Formula node must be an object with an 'op': {doc!r}")
    return doc["op"]


# Score expressions


def _scores(doc: dict[str, Any]) -> ScoreFn:
    return lambda mapped: dict(mapped)


def _pick(doc: dict[str, Any]) -> ScoreFn:
    subjects = set(_subject_list(doc))
    inner = compile_score(_require_key(doc, "of"))

    def run(mapped: SubjectScores) -> SubjectScores | None:
        scores = inner(mapped)
        if scores is None:
            return None
        return {k: v for k, v in scores.items() if k in subjects}

    return run


def _exclude(doc: dict[str, Any]) -> ScoreFn:
    subjects = set(_subject_list(doc))
    inner = compile_score(_require_key(doc, "of"))

    def run(mapped: SubjectScores) -> SubjectScores | None:
        scores = inner(mapped)
        if scores is None:
            return None
        return {k: v for k, v in scores.items() if k not in subjects}

    return run


def _require(doc: dict[str, Any]) -> ScoreFn:
    subjects = _subject_list(doc)
    inner = compile_score(_require_key(doc, "of"))

    def run(mapped: SubjectScores) -> SubjectScores | None:
        scores = inner(mapped)
        if scores is None or any(subject not in scores for subject in subjects):
            return None
        return scores

    return run


def _best(doc: dict[str, Any]) -> ScoreFn:
    count = int(_number(doc, "n"))
    if count < 0:
        raise FormulaError("Operator 'best' expects a non-negative 'n'")
    strict = bool(doc.get("strict", False))
    inner = compile_score(_require_key(doc, "of"))

    def run(mapped: SubjectScores) -> SubjectScores | None:
        scores = inner(mapped)
        if scores is None:
            return None
        if strict and len(scores) < count:
            return None
        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        return dict(ranked[:count])

    return run


def _weight(doc: dict[str, Any]) -> ScoreFn:
    weights = _require_key(doc, "weights")
    if not isinstance(weights, dict):
        raise FormulaError("Operator 'weight' expects 'weights' to be an object")
    for subject, value in weights.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FormulaError(f"Operator 'weight' expects a numeric weight for {subject}")
    weights = {str(k): float(v) for k, v in weights.items()}
    default = _number(doc, "default", 1)
    inner = compile_score(_require_key(doc, "of"))

    def run(mapped: SubjectScores) -> SubjectScores | None:
        scores = inner(mapped)
        if scores is None:
            return None
        return {k: v * weights.get(k, default) for k, v in scores.items()}

    return run


def _merge(doc: dict[str, Any]) -> ScoreFn:
    args = _require_key(doc, "args")
    if not isinstance(args, list) or not args:
        raise FormulaError("Operator 'merge' expects a non-empty 'args' list")
    parts = [compile_score(arg) for arg in args]

    def run(mapped: SubjectScores) -> SubjectScores | None:
        output: SubjectScores = {}
        for part in parts:
            scores = part(mapped)
            if scores is None:
                return None
            output.update(scores)
        return output

    return run


def _bonus(doc: dict[str, Any]) -> ScoreFn:
    subjects = set(_subject_list(doc))
    value = _number(doc, "value")
    inner = compile_score(_require_key(doc, "of"))

    def run(mapped: SubjectScores) -> SubjectScores | None:
        scores = inner(mapped)
        if scores is None:
            return None
        return {k: v + value if k in subjects else v for k, v in scores.items()}

    return run


SCORE_OPERATORS: dict[str, Callable[[dict[str, Any]], ScoreFn]] = {
    "scores": _scores,
    "pick": _pick,
    "exclude": _exclude,
    "require": _require,
    "best": _best,
    "weight": _weight,
    "merge": _merge,
    "bonus": _bonus,
}


def compile_score(doc: Any) -> ScoreFn:
    op = _op(doc)
    builder = SCORE_OPERATORS.get(op)
    if builder is None:
        raise FormulaError(f"Unknown score operator: {op}")
    return builder(doc)


# Predicates


def _always(doc: dict[str, Any]) -> PredicateFn:
    return lambda mapped: True


def _predicate_args(doc: dict[str, Any]) -> list[PredicateFn]:
    args = _require_key(doc, "args")
    if not isinstance(args, list):
        raise FormulaError(f"Operator '{doc.get('op')}' expects 'args' to be a list")
    return [compile_predicate(arg) for arg in args]


def _all(doc: dict[str, Any]) -> PredicateFn:
    parts = _predicate_args(doc)
    return lambda mapped: all(part(mapped) for part in parts)


def _any(doc: dict[str, Any]) -> PredicateFn:
    parts = _predicate_args(doc)
    return lambda mapped: any(part(mapped) for part in parts)


def _not(doc: dict[str, Any]) -> PredicateFn:
    inner = compile_predicate(_require_key(doc, "arg"))
    return lambda mapped: not inner(mapped)


def _at_least(doc: dict[str, Any]) -> PredicateFn:
    subject = _require_key(doc, "subject")
    if not isinstance(subject, str):
        raise FormulaError("Operator 'at_least' expects 'subject' to be a subject id")
    value = _number(doc, "value")

    def run(mapped: SubjectScores) -> bool:
        score = mapped.get(subject)
        return score is not None and score >= value

    return run


def _count_at_least(doc: dict[str, Any]) -> PredicateFn:
    subjects = set(_subject_list(doc)) if "subjects" in doc else None
    value = _number(doc, "value")
    count = int(_number(doc, "count", 1))

    def run(mapped: SubjectScores) -> bool:
        hits = [
            k for k, v in mapped.items() if (subjects is None or k in subjects) and v >= value
        ]
        return len(hits) >= count

    return run


def _total_at_least(doc: dict[str, Any]) -> PredicateFn:
    inner = compile_score(_require_key(doc, "of"))
    value = _number(doc, "value")

    def run(mapped: SubjectScores) -> bool:
        scores = inner(mapped)
        return scores is not None and sum(scores.values()) >= value

    return run


PREDICATE_OPERATORS: dict[str, Callable[[dict[str, Any]], PredicateFn]] = {
    "always": _always,
    "all": _all,
    "any": _any,
    "not": _not,
    "at_least": _at_least,
    "count_at_least": _count_at_least,
    "total_at_least": _total_at_least,
}


def compile_predicate(doc: Any) -> PredicateFn:
    op = _op(doc)
    builder = PREDICATE_OPERATORS.get(op)
    if builder is None:
        raise FormulaError(f"Unknown requirement operator: {op}")
    return builder(doc)


# Grade mapping


def _points_table(value: Any, where: str) -> dict[str, float]:
    if not isinstance(value, dict):
        raise FormulaError(f"Grade mapping '{where}' must be an object")
    for grade, points in value.items():
        if isinstance(points, bool) or not isinstance(points, (int, float)):
            raise FormulaError(f"Grade mapping '{where}' expects a numeric value for grade {grade}")
    return {str(grade): float(points) for grade, points in value.items()}


def compile_grade_mapping(doc: Any, grade_map: dict[str, dict[str, float]]) -> Callable[[SubjectGrades], SubjectScores]:
    """Build the grade -> point conversion for one programme.

    ``grade_map`` is the catalog grade table (subject -> {label: value}); it
    is used for every subject without an explicit ``points`` table or a
    per-subject override.
    """
    doc = doc or {}
    if not isinstance(doc, dict):
        raise FormulaError("Grade mapping must be an object")
    points = doc.get("points")
    overrides = doc.get("overrides") or {}
    allowed = set(_subject_list(doc)) if "subjects" in doc else None
    if points is not None:
        points = _points_table(points, "points")
    if not isinstance(overrides, dict):
        raise FormulaError("Grade mapping 'overrides' must be an object")
    overrides = {str(subject): _points_table(table, f"overrides.{subject}") for subject, table in overrides.items()}

    def run(subjects: SubjectGrades) -> SubjectScores:
        output: SubjectScores = {}
        for subject, grade in subjects.items():
            if not grade:
                continue
            if allowed is not None and subject not in allowed:
                continue
            table = overrides.get(subject) or points or grade_map.get(subject) or {}
            value = table.get(grade)
            if value is not None:
                output[subject] = float(value)
        return output

    return run
