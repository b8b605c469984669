"""SQLite-backed repository storing records as JSON payload columns."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from kctgov.core.errors import ClassNotFound, ConcurrentModification, PlanNotFound, VersionNotFound
from kctgov.models.mapping import AppliedVersionRef, ClassAppliedVersion, ClassFacts
from kctgov.models.rollout import RolloutPlan
from kctgov.models.versions import CurriculumVersion

from .base import sort_versions


class SQLiteRepository:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._write_lock = threading.Lock()
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        """Create a connection, ensuring the parent directory exists."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.db_path, timeout=10.0)

    def _ensure_schema(self) -> None:
        schema_sql = Path(__file__).with_name("schema.sql").read_text(encoding="utf-8")
        with self._connect() as con:
            con.executescript(schema_sql)

    def execute(self, sql: str, params: tuple | None = None) -> int:
        """Execute a single SQL statement and return the last row id (if any)."""

        with self._write_lock, self._connect() as con:
            cur = con.execute(sql, params or tuple())
            con.commit()
            return int(cur.lastrowid or 0)

    def execute_many(self, sql: str, rows: Iterable[tuple]) -> None:
        buffered_rows = list(rows)
        if not buffered_rows:
            return
        with self._write_lock, self._connect() as con:
            con.executemany(sql, buffered_rows)
            con.commit()

    def query(self, sql: str, params: tuple | None = None) -> list[tuple]:
        with self._connect() as con:
            cur = con.execute(sql, params or tuple())
            return cur.fetchall()

    # ---------------------------------------------------------------- versions

    def add_version(self, version: CurriculumVersion) -> CurriculumVersion:
        try:
            self.execute(
                "INSERT INTO versions (id, framework_id, version_label, state, revision, payload) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    version.id,
                    version.framework_id,
                    version.version_label,
                    version.state.value,
                    version.revision,
                    version.model_dump_json(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Version {version.id} ({version.version_label}) already exists") from exc
        return version

    def get_version(self, version_id: str) -> CurriculumVersion:
        rows = self.query("SELECT payload FROM versions WHERE id = ?", (version_id,))
        if not rows:
            raise VersionNotFound(version_id)
        return CurriculumVersion.model_validate_json(rows[0][0])

    def list_versions(self, framework_id: str | None = None) -> List[CurriculumVersion]:
        if framework_id is None:
            rows = self.query("SELECT payload FROM versions")
        else:
            rows = self.query("SELECT payload FROM versions WHERE framework_id = ?", (framework_id,))
        return sort_versions([CurriculumVersion.model_validate_json(row[0]) for row in rows])

    def save_versions(self, versions: Sequence[CurriculumVersion]) -> List[CurriculumVersion]:
        saved = [version.model_copy(update={"revision": version.revision + 1}) for version in versions]
        with self._write_lock, self._connect() as con:
            for original, version in zip(versions, saved):
                cur = con.execute(
                    "UPDATE versions SET state = ?, revision = ?, payload = ? WHERE id = ? AND revision = ?",
                    (version.state.value, version.revision, version.model_dump_json(), version.id, original.revision),
                )
                if cur.rowcount == 1:
                    continue
                row = con.execute("SELECT revision FROM versions WHERE id = ?", (version.id,)).fetchone()
                con.rollback()
                if row is None:
                    raise VersionNotFound(version.id)
                raise ConcurrentModification(
                    f"Version {version.id}",
                    expected_revision=original.revision,
                    actual_revision=int(row[0]),
                )
            con.commit()
        return saved

    # ----------------------------------------------------------------- classes

    def put_class(self, facts: ClassFacts) -> None:
        self.execute(
            "INSERT INTO classes (class_id, payload) VALUES (?, ?) "
            "ON CONFLICT(class_id) DO UPDATE SET payload = excluded.payload",
            (facts.class_id, facts.model_dump_json()),
        )

    def get_class(self, class_id: str) -> ClassFacts:
        rows = self.query("SELECT payload FROM classes WHERE class_id = ?", (class_id,))
        if not rows:
            raise ClassNotFound(class_id)
        return ClassFacts.model_validate_json(rows[0][0])

    def list_classes(self) -> List[ClassFacts]:
        rows = self.query("SELECT payload FROM classes ORDER BY class_id")
        return [ClassFacts.model_validate_json(row[0]) for row in rows]

    def record_applied(self, class_id: str, applied: ClassAppliedVersion) -> ClassFacts:
        facts = self.get_class(class_id)
        updated = facts.model_copy(
            update={
                "applied_version": AppliedVersionRef(
                    kct_version_id=applied.kct_version_id,
                    version_label=applied.version_label,
                )
            }
        )
        with self._write_lock, self._connect() as con:
            cur = con.execute(
                "INSERT INTO applied_versions (class_id, kct_version_id, applied_at, payload) VALUES (?, ?, ?, ?)",
                (class_id, applied.kct_version_id, applied.applied_at.isoformat(), applied.model_dump_json()),
            )
            con.execute(
                "INSERT INTO class_current (class_id, applied_id) VALUES (?, ?) "
                "ON CONFLICT(class_id) DO UPDATE SET applied_id = excluded.applied_id",
                (class_id, cur.lastrowid),
            )
            con.execute("UPDATE classes SET payload = ? WHERE class_id = ?", (updated.model_dump_json(), class_id))
            con.commit()
        return updated

    def current_applied(self, class_id: str) -> Optional[ClassAppliedVersion]:
        self.get_class(class_id)
        rows = self.query(
            "SELECT a.payload FROM class_current c JOIN applied_versions a ON a.id = c.applied_id WHERE c.class_id = ?",
            (class_id,),
        )
        if not rows:
            return None
        return ClassAppliedVersion.model_validate_json(rows[0][0])

    def applied_history(self, class_id: str) -> List[ClassAppliedVersion]:
        self.get_class(class_id)
        rows = self.query("SELECT payload FROM applied_versions WHERE class_id = ? ORDER BY id", (class_id,))
        return [ClassAppliedVersion.model_validate_json(row[0]) for row in rows]

    def clear_applied(self, class_id: str) -> ClassFacts:
        updated = self.get_class(class_id).model_copy(update={"applied_version": None})
        with self._write_lock, self._connect() as con:
            con.execute("DELETE FROM class_current WHERE class_id = ?", (class_id,))
            con.execute("UPDATE classes SET payload = ? WHERE class_id = ?", (updated.model_dump_json(), class_id))
            con.commit()
        return updated

    # ------------------------------------------------------------------- plans

    def add_plan(self, plan: RolloutPlan) -> RolloutPlan:
        try:
            self.execute(
                "INSERT INTO rollout_plans (id, kct_version_id, status, revision, created_at, payload) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    plan.id,
                    plan.kct_version_id,
                    plan.status.value,
                    plan.revision,
                    plan.created_at.isoformat(),
                    plan.model_dump_json(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Rollout plan {plan.id} already exists") from exc
        return plan.model_copy(deep=True)

    def get_plan(self, plan_id: str) -> RolloutPlan:
        rows = self.query("SELECT payload FROM rollout_plans WHERE id = ?", (plan_id,))
        if not rows:
            raise PlanNotFound(plan_id)
        return RolloutPlan.model_validate_json(rows[0][0])

    def list_plans(self, kct_version_id: str | None = None) -> List[RolloutPlan]:
        if kct_version_id is None:
            rows = self.query("SELECT payload FROM rollout_plans ORDER BY created_at")
        else:
            rows = self.query(
                "SELECT payload FROM rollout_plans WHERE kct_version_id = ? ORDER BY created_at",
                (kct_version_id,),
            )
        return [RolloutPlan.model_validate_json(row[0]) for row in rows]

    def save_plan(self, plan: RolloutPlan) -> RolloutPlan:
        saved = plan.model_copy(update={"revision": plan.revision + 1}, deep=True)
        with self._write_lock, self._connect() as con:
            cur = con.execute(
                "UPDATE rollout_plans SET status = ?, revision = ?, payload = ? WHERE id = ? AND revision = ?",
                (saved.status.value, saved.revision, saved.model_dump_json(), plan.id, plan.revision),
            )
            if cur.rowcount != 1:
                row = con.execute("SELECT revision FROM rollout_plans WHERE id = ?", (plan.id,)).fetchone()
                if row is None:
                    raise PlanNotFound(plan.id)
                raise ConcurrentModification(
                    f"Rollout plan {plan.id}",
                    expected_revision=plan.revision,
                    actual_revision=int(row[0]),
                )
            con.commit()
        return saved


__all__ = ["SQLiteRepository"]
