"""Informational structural diff between two curriculum versions."""

from __future__ import annotations

from typing import List, Optional

from kctgov.models.versions import CurriculumVersion, VersionDiff


def _count_diff(field: str, noun: str, old: int, new: int) -> Optional[VersionDiff]:
    if old == new:
        return None
    kind = "added" if new > old else "removed"
    return VersionDiff(
        type=kind,
        field=field,
        old_value=old,
        new_value=new,
        description=f"{abs(new - old)} {noun}(s) {kind}",
    )


def diff_versions(current: CurriculumVersion, previous: CurriculumVersion | None) -> List[VersionDiff]:
    """Compare course count, total unit hours and unit count; never blocks a transition."""
    if previous is None:
        return []
    diffs: List[VersionDiff] = []

    courses = _count_diff("courses", "course", len(previous.content.courses), len(current.content.courses))
    if courses is not None:
        diffs.append(courses)

    old_hours = previous.content.unit_hours
    new_hours = current.content.unit_hours
    if old_hours != new_hours:
        diffs.append(
            VersionDiff(
                type="modified",
                field="totalHours",
                old_value=old_hours,
                new_value=new_hours,
                description=f"Total hours changed from {old_hours:g}h to {new_hours:g}h",
            )
        )

    units = _count_diff("units", "unit", previous.content.unit_count, current.content.unit_count)
    if units is not None:
        diffs.append(units)
    return diffs


__all__ = ["diff_versions"]
