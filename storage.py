from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from catalog import Catalog
from models import StoredProfile
from profiles import create_profile

logger = logging.getLogger(__name__)


def list_profiles(db: Session, year: str) -> list[dict[str, Any]]:
    rows = db.scalars(
        select(StoredProfile).where(StoredProfile.year == year).order_by(StoredProfile.created_at, StoredProfile.id)
    ).all()
    return [row.to_profile() for row in rows]


def get_profile(db: Session, year: str, profile_id: str) -> Optional[dict[str, Any]]:
    row = db.get(StoredProfile, (year, profile_id))
    return row.to_profile() if row else None


def save_profile(db: Session, year: str, profile: dict[str, Any]) -> dict[str, Any]:
    subjects = dict(profile.get("subjects") or {})
    row = db.get(StoredProfile, (year, profile["id"]))
    if row:
        row.subjects_json = subjects
    else:
        db.add(StoredProfile(year=year, id=profile["id"], subjects_json=subjects))
    db.flush()
    return {"id": profile["id"], "subjects": subjects}


def delete_profile(db: Session, year: str, profile_id: str) -> bool:
    result = db.execute(delete(StoredProfile).where(StoredProfile.year == year, StoredProfile.id == profile_id))
    return bool(result.rowcount)


def ensure_profile(db: Session, catalog: Catalog) -> dict[str, Any]:
    profiles = list_profiles(db, catalog.year)
    if profiles:
        return profiles[0]
    logger.info("No stored profiles for %s, creating a seeded one", catalog.year)
    return save_profile(db, catalog.year, create_profile(catalog))
