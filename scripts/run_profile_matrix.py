from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from catalog import CatalogCache, load_locale
from logging_config import init_logging
from logic import build_result_rows, format_delta
from profiles import profile_needs_attention
from table import apply_table_state, default_state, set_filter, set_pagination, toggle_sort

logger = logging.getLogger("run_profile_matrix")


def scenario_profiles() -> list[dict[str, Any]]:
    return [
        {
            "name": "Strong science",
            "id": "strong-science",
            "subjects": {"CHI": "5", "ENG": "5*", "MATH": "5**", "PHY": "5**", "CHEM": "5*", "M2": "5"},
        },
        {
            "name": "Balanced arts",
            "id": "balanced-arts",
            "subjects": {"CHI": "5*", "ENG": "5", "MATH": "4", "HIST": "5", "ECON": "4"},
        },
        {
            "name": "Borderline",
            "id": "borderline",
            "subjects": {"CHI": "3", "ENG": "3", "MATH": "2", "BIO": "3", "ICT": "2"},
        },
        {
            "name": "Missing grades",
            "id": "missing",
            "subjects": {"CHI": "", "ENG": "4", "MATH": "4", "M1": "3", "M2": "3"},
        },
    ]


def main() -> None:
    parser = argparse.ArgumentParser(description="Evaluate sample profiles against one admission year.")
    parser.add_argument("--year", default="latest")
    parser.add_argument("--lang", default="en")
    parser.add_argument("--top", type=int, default=5)
    args = parser.parse_args()

    init_logging()
    cache = CatalogCache()
    catalog = cache.get(args.year)
    last_year = cache.get_last_year(catalog) if not catalog.has_stats else None
    locale = load_locale(catalog.year, args.lang, cache.data_root)

    state = toggle_sort(set_filter(default_state(), "pass", True), "M")
    state = set_pagination(state, page_size=args.top)

    for scenario in scenario_profiles():
        print(f"\n=== {scenario['name']} ({catalog.year}) ===")
        if profile_needs_attention(catalog, scenario):
            print("Profile has errors (missing grades or conflicting subjects); results may be incomplete.")
        rows = build_result_rows(catalog, scenario, locale, last_year)
        page = apply_table_state(rows, state)
        if not page["rows"]:
            print("Outcome: no programme produced a score")
            continue
        for idx, row in enumerate(page["rows"], start=1):
            deltas = ", ".join(f"{key} {format_delta(value)}" for key, value in row["deltas"].items())
            score = row["score_text"] or "-"
            if row["last_year_score_text"]:
                score += f" ({row['last_year_score_text']})"
            print(f"{idx}. {row['id']} {row['name']} @ {row['institution']}: {score}{row['remark']} {deltas}")
            print(f"   {row['url']}")


if __name__ == "__main__":
    main()
