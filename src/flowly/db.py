from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from .models import (
    GoalEntity,
    HabitEntity,
    HabitLogEntity,
    MilestoneEntity,
    ProfileEntity,
    Role,
    SubscriptionEntity,
    TaskEntity,
)
from .repositories import (
    GOAL_NULLABLE,
    HABIT_NULLABLE,
    MILESTONE_NULLABLE,
    TASK_NULLABLE,
    Repository,
    TaskQuery,
    apply_update,
    normalize_sort,
)
from .schemas import (
    GoalCreate,
    GoalUpdate,
    HabitCreate,
    HabitUpdate,
    MilestoneCreate,
    MilestoneUpdate,
    TaskCreate,
    TaskUpdate,
)

# Column kinds drive conversion between sqlite values and entity values.
_TABLES: Dict[str, Dict[str, str]] = {
    "profiles": {
        "id": "str", "email": "str", "full_name": "str", "role": "str", "created_at": "dt",
    },
    "tasks": {
        "id": "int", "user_id": "str", "title": "str", "description": "str", "completed": "bool",
        "priority": "str", "due_date": "dt", "start_at": "dt", "end_at": "dt", "color": "str",
        "created_at": "dt", "updated_at": "dt",
    },
    "habits": {
        "id": "int", "user_id": "str", "name": "str", "frequency": "str", "description": "str",
        "created_at": "dt", "updated_at": "dt",
    },
    "habit_logs": {
        "id": "int", "habit_id": "int", "user_id": "str", "completed_at": "dt", "notes": "str",
    },
    "goals": {
        "id": "int", "user_id": "str", "title": "str", "description": "str", "target_date": "dt",
        "progress": "int", "status": "str", "created_at": "dt", "updated_at": "dt",
    },
    "milestones": {
        "id": "int", "goal_id": "int", "title": "str", "description": "str", "completed": "bool",
        "due_date": "dt", "created_at": "dt", "updated_at": "dt",
    },
    "subscriptions": {
        "user_id": "str", "stripe_customer_id": "str", "stripe_subscription_id": "str",
        "status": "str", "plan_type": "str", "current_period_end": "dt",
    },
}

_DDL = [
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        email TEXT NULL,
        full_name TEXT NULL,
        role TEXT NOT NULL DEFAULT 'free_user',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT NULL,
        completed INTEGER NOT NULL DEFAULT 0,
        priority TEXT NOT NULL DEFAULT 'medium',
        due_date TEXT NULL,
        start_at TEXT NULL,
        end_at TEXT NULL,
        color TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS habits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        frequency TEXT NOT NULL DEFAULT 'daily',
        description TEXT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS habit_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        habit_id INTEGER NOT NULL REFERENCES habits(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        completed_at TEXT NOT NULL,
        notes TEXT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS goals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT NULL,
        target_date TEXT NULL,
        progress INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'in_progress',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS milestones (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        goal_id INTEGER NOT NULL REFERENCES goals(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        description TEXT NULL,
        completed INTEGER NOT NULL DEFAULT 0,
        due_date TEXT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        user_id TEXT PRIMARY KEY,
        stripe_customer_id TEXT NOT NULL,
        stripe_subscription_id TEXT NOT NULL,
        status TEXT NOT NULL,
        plan_type TEXT NULL,
        current_period_end TEXT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_user ON tasks(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_habits_user ON habits(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_habit_logs_user_completed ON habit_logs(user_id, completed_at)",
    "CREATE INDEX IF NOT EXISTS idx_goals_user ON goals(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_milestones_goal ON milestones(goal_id)",
]

_PRIORITY_RANK_SQL = "CASE priority WHEN 'low' THEN 0 WHEN 'medium' THEN 1 ELSE 2 END"


def _to_db(kind: str, value: Any) -> Any:
    if value is None:
        return None
    if kind == "dt":
        return value.isoformat()
    if kind == "bool":
        return 1 if value else 0
    return value


def _from_db(kind: str, value: Any) -> Any:
    if value is None:
        return None
    if kind == "dt":
        return datetime.fromisoformat(value)
    if kind == "bool":
        return bool(value)
    if kind == "int":
        return int(value)
    return str(value)


class SQLiteRepository(Repository):
    """
    Lightweight SQLite repository implementing the Repository interface.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            for statement in _DDL:
                conn.execute(statement)

    # Generic helpers

    def _row_to_entity(self, table: str, row: sqlite3.Row) -> Dict[str, Any]:
        columns = _TABLES[table]
        return {name: _from_db(kind, row[name]) for name, kind in columns.items()}

    def _insert(self, conn: sqlite3.Connection, table: str, values: Dict[str, Any]) -> int:
        columns = _TABLES[table]
        names = list(values)
        placeholders = ", ".join("?" for _ in names)
        cur = conn.execute(
            f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
            [_to_db(columns[n], values[n]) for n in names],
        )
        return int(cur.lastrowid)

    def _write(self, conn: sqlite3.Connection, table: str, key: str, entity: Dict[str, Any]) -> None:
        columns = _TABLES[table]
        names = [n for n in columns if n != key]
        assignments = ", ".join(f"{n} = ?" for n in names)
        conn.execute(
            f"UPDATE {table} SET {assignments} WHERE {key} = ?",
            [_to_db(columns[n], entity[n]) for n in names] + [entity[key]],
        )

    def _fetch_one(
        self, conn: sqlite3.Connection, table: str, where: str, params: Sequence[Any]
    ) -> Optional[Dict[str, Any]]:
        row = conn.execute(f"SELECT * FROM {table} WHERE {where}", list(params)).fetchone()
        return self._row_to_entity(table, row) if row else None

    def _fetch_all(
        self, conn: sqlite3.Connection, table: str, sql: str, params: Sequence[Any]
    ) -> List[Dict[str, Any]]:
        return [self._row_to_entity(table, r) for r in conn.execute(sql, list(params)).fetchall()]

    # Profiles

    def get_profile(self, user_id: str) -> Optional[ProfileEntity]:
        with self._conn() as conn:
            return self._fetch_one(conn, "profiles", "id = ?", (user_id,))  # type: ignore[return-value]

    def ensure_profile(
        self, user_id: str, email: Optional[str] = None, full_name: Optional[str] = None
    ) -> ProfileEntity:
        with self._conn() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO profiles (id, email, full_name, role, created_at) VALUES (?, ?, ?, ?, ?)",
                (user_id, email.lower() if email else None, full_name, "free_user", datetime.now().isoformat()),
            )
            profile = self._fetch_one(conn, "profiles", "id = ?", (user_id,))
            assert profile is not None
            return profile  # type: ignore[return-value]

    def update_profile(self, user_id: str, full_name: Optional[str]) -> Optional[ProfileEntity]:
        with self._conn() as conn:
            conn.execute("UPDATE profiles SET full_name = ? WHERE id = ?", (full_name, user_id))
            return self._fetch_one(conn, "profiles", "id = ?", (user_id,))  # type: ignore[return-value]

    def set_role(self, user_id: str, role: Role) -> Optional[ProfileEntity]:
        with self._conn() as conn:
            conn.execute("UPDATE profiles SET role = ? WHERE id = ?", (role, user_id))
            return self._fetch_one(conn, "profiles", "id = ?", (user_id,))  # type: ignore[return-value]

    # Generic owned-record operations

    def _get_owned(self, table: str, user_id: str, record_id: int) -> Optional[Dict[str, Any]]:
        with self._conn() as conn:
            return self._fetch_one(conn, table, "id = ? AND user_id = ?", (record_id, user_id))

    def _update_owned(
        self, table: str, user_id: str, record_id: int, data: BaseModel, nullable: set
    ) -> Optional[Dict[str, Any]]:
        with self._conn() as conn:
            current = self._fetch_one(conn, table, "id = ? AND user_id = ?", (record_id, user_id))
            if current is None:
                return None
            updated = apply_update(current, data, nullable)
            updated["updated_at"] = datetime.now()
            self._write(conn, table, "id", updated)
            return self._fetch_one(conn, table, "id = ?", (record_id,))

    def _delete_owned(self, table: str, user_id: str, record_id: int) -> bool:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {table} WHERE id = ? AND user_id = ?", (record_id, user_id))
            return cur.rowcount > 0

    # Tasks

    def create_task(self, user_id: str, data: TaskCreate) -> TaskEntity:
        now = datetime.now()
        with self._conn() as conn:
            new_id = self._insert(conn, "tasks", {
                "user_id": user_id,
                "title": data.title,
                "description": data.description,
                "completed": data.completed,
                "priority": data.priority,
                "due_date": data.due_date,
                "start_at": data.start_at,
                "end_at": data.end_at,
                "color": data.color,
                "created_at": now,
                "updated_at": now,
            })
            row = self._fetch_one(conn, "tasks", "id = ?", (new_id,))
            assert row is not None
            return row  # type: ignore[return-value]

    def get_task(self, user_id: str, task_id: int) -> Optional[TaskEntity]:
        return self._get_owned("tasks", user_id, task_id)  # type: ignore[return-value]

    def update_task(self, user_id: str, task_id: int, data: TaskUpdate) -> Optional[TaskEntity]:
        return self._update_owned("tasks", user_id, task_id, data, TASK_NULLABLE)  # type: ignore[return-value]

    def delete_task(self, user_id: str, task_id: int) -> bool:
        return self._delete_owned("tasks", user_id, task_id)

    def list_tasks(self, user_id: str, query: Optional[TaskQuery] = None) -> Tuple[List[TaskEntity], int]:
        q = query or TaskQuery()
        clauses = ["user_id = ?"]
        params: list = [user_id]

        if q.completed is not None:
            clauses.append("completed = ?")
            params.append(1 if q.completed else 0)

        if q.priority is not None:
            clauses.append("priority = ?")
            params.append(q.priority)

        if q.search:
            clauses.append("(title LIKE ? OR description LIKE ?)")
            like = f"%{q.search}%"
            params.extend([like, like])

        where_sql = f"WHERE {' AND '.join(clauses)}"

        field, descending = normalize_sort(q.sort)
        direction = "DESC" if descending else "ASC"
        if field == "priority":
            order_sql = f"ORDER BY {_PRIORITY_RANK_SQL} {direction}, created_at {direction}"
        elif field == "due_date":
            order_sql = f"ORDER BY due_date IS NULL, due_date {direction}"
        else:
            order_sql = f"ORDER BY {field} {direction}"

        with self._conn() as conn:
            count_row = conn.execute(f"SELECT COUNT(*) as cnt FROM tasks {where_sql}", params).fetchone()
            total = int(count_row["cnt"]) if count_row else 0
            rows = self._fetch_all(
                conn,
                "tasks",
                f"SELECT * FROM tasks {where_sql} {order_sql} LIMIT ? OFFSET ?",
                [*params, max(q.limit, 0), max(q.offset, 0)],
            )
            return rows, total  # type: ignore[return-value]

    def list_all_tasks(self, user_id: str) -> List[TaskEntity]:
        with self._conn() as conn:
            return self._fetch_all(  # type: ignore[return-value]
                conn, "tasks", "SELECT * FROM tasks WHERE user_id = ? ORDER BY created_at DESC, id DESC", (user_id,)
            )

    def list_tasks_between(self, user_id: str, start: datetime, end: datetime) -> List[TaskEntity]:
        with self._conn() as conn:
            return self._fetch_all(  # type: ignore[return-value]
                conn,
                "tasks",
                "SELECT * FROM tasks WHERE user_id = ? AND start_at IS NOT NULL "
                "AND start_at >= ? AND start_at < ? ORDER BY start_at ASC",
                (user_id, start.isoformat(), end.isoformat()),
            )

    # Habits and logs

    def create_habit(self, user_id: str, data: HabitCreate) -> HabitEntity:
        now = datetime.now()
        with self._conn() as conn:
            new_id = self._insert(conn, "habits", {
                "user_id": user_id,
                "name": data.name,
                "frequency": data.frequency,
                "description": data.description,
                "created_at": now,
                "updated_at": now,
            })
            row = self._fetch_one(conn, "habits", "id = ?", (new_id,))
            assert row is not None
            return row  # type: ignore[return-value]

    def get_habit(self, user_id: str, habit_id: int) -> Optional[HabitEntity]:
        return self._get_owned("habits", user_id, habit_id)  # type: ignore[return-value]

    def update_habit(self, user_id: str, habit_id: int, data: HabitUpdate) -> Optional[HabitEntity]:
        return self._update_owned("habits", user_id, habit_id, data, HABIT_NULLABLE)  # type: ignore[return-value]

    def delete_habit(self, user_id: str, habit_id: int) -> bool:
        return self._delete_owned("habits", user_id, habit_id)

    def list_habits(self, user_id: str) -> List[HabitEntity]:
        with self._conn() as conn:
            return self._fetch_all(  # type: ignore[return-value]
                conn, "habits", "SELECT * FROM habits WHERE user_id = ? ORDER BY created_at, id", (user_id,)
            )

    def list_habit_logs(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        habit_id: Optional[int] = None,
    ) -> List[HabitLogEntity]:
        clauses = ["user_id = ?"]
        params: list = [user_id]
        if habit_id is not None:
            clauses.append("habit_id = ?")
            params.append(habit_id)
        if start is not None:
            clauses.append("completed_at >= ?")
            params.append(start.isoformat())
        if end is not None:
            clauses.append("completed_at < ?")
            params.append(end.isoformat())
        with self._conn() as conn:
            return self._fetch_all(  # type: ignore[return-value]
                conn,
                "habit_logs",
                f"SELECT * FROM habit_logs WHERE {' AND '.join(clauses)} ORDER BY completed_at DESC, id DESC",
                params,
            )

    def add_habit_log(
        self, user_id: str, habit_id: int, completed_at: datetime, notes: Optional[str] = None
    ) -> Optional[HabitLogEntity]:
        with self._conn() as conn:
            if self._fetch_one(conn, "habits", "id = ? AND user_id = ?", (habit_id, user_id)) is None:
                return None
            new_id = self._insert(conn, "habit_logs", {
                "habit_id": habit_id,
                "user_id": user_id,
                "completed_at": completed_at,
                "notes": notes,
            })
            return self._fetch_one(conn, "habit_logs", "id = ?", (new_id,))  # type: ignore[return-value]

    def delete_habit_log(self, user_id: str, log_id: int) -> bool:
        return self._delete_owned("habit_logs", user_id, log_id)

    # Goals and milestones

    def create_goal(self, user_id: str, data: GoalCreate) -> GoalEntity:
        now = datetime.now()
        with self._conn() as conn:
            new_id = self._insert(conn, "goals", {
                "user_id": user_id,
                "title": data.title,
                "description": data.description,
                "target_date": data.target_date,
                "progress": 0,
                "status": "in_progress",
                "created_at": now,
                "updated_at": now,
            })
            row = self._fetch_one(conn, "goals", "id = ?", (new_id,))
            assert row is not None
            return row  # type: ignore[return-value]

    def get_goal(self, user_id: str, goal_id: int) -> Optional[GoalEntity]:
        return self._get_owned("goals", user_id, goal_id)  # type: ignore[return-value]

    def update_goal(self, user_id: str, goal_id: int, data: GoalUpdate) -> Optional[GoalEntity]:
        return self._update_owned("goals", user_id, goal_id, data, GOAL_NULLABLE)  # type: ignore[return-value]

    def delete_goal(self, user_id: str, goal_id: int) -> bool:
        return self._delete_owned("goals", user_id, goal_id)

    def list_goals(self, user_id: str) -> List[GoalEntity]:
        with self._conn() as conn:
            return self._fetch_all(  # type: ignore[return-value]
                conn, "goals", "SELECT * FROM goals WHERE user_id = ? ORDER BY created_at DESC, id DESC", (user_id,)
            )

    _OWNED_MILESTONE = "id = ? AND goal_id IN (SELECT id FROM goals WHERE user_id = ?)"

    def create_milestone(self, user_id: str, goal_id: int, data: MilestoneCreate) -> Optional[MilestoneEntity]:
        now = datetime.now()
        with self._conn() as conn:
            if self._fetch_one(conn, "goals", "id = ? AND user_id = ?", (goal_id, user_id)) is None:
                return None
            new_id = self._insert(conn, "milestones", {
                "goal_id": goal_id,
                "title": data.title,
                "description": data.description,
                "completed": False,
                "due_date": data.due_date,
                "created_at": now,
                "updated_at": now,
            })
            return self._fetch_one(conn, "milestones", "id = ?", (new_id,))  # type: ignore[return-value]

    def get_milestone(self, user_id: str, milestone_id: int) -> Optional[MilestoneEntity]:
        with self._conn() as conn:
            return self._fetch_one(  # type: ignore[return-value]
                conn, "milestones", self._OWNED_MILESTONE, (milestone_id, user_id)
            )

    def update_milestone(
        self, user_id: str, milestone_id: int, data: MilestoneUpdate
    ) -> Optional[MilestoneEntity]:
        with self._conn() as conn:
            current = self._fetch_one(conn, "milestones", self._OWNED_MILESTONE, (milestone_id, user_id))
            if current is None:
                return None
            updated = apply_update(current, data, MILESTONE_NULLABLE)
            updated["updated_at"] = datetime.now()
            self._write(conn, "milestones", "id", updated)
            return self._fetch_one(conn, "milestones", "id = ?", (milestone_id,))  # type: ignore[return-value]

    def set_milestone_completed(self, user_id: str, milestone_id: int, completed: bool) -> Optional[MilestoneEntity]:
        with self._conn() as conn:
            cur = conn.execute(
                f"UPDATE milestones SET completed = ?, updated_at = ? WHERE {self._OWNED_MILESTONE}",
                (1 if completed else 0, datetime.now().isoformat(), milestone_id, user_id),
            )
            if cur.rowcount == 0:
                return None
            return self._fetch_one(conn, "milestones", "id = ?", (milestone_id,))  # type: ignore[return-value]

    def delete_milestone(self, user_id: str, milestone_id: int) -> bool:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM milestones WHERE {self._OWNED_MILESTONE}", (milestone_id, user_id))
            return cur.rowcount > 0

    def list_milestones(self, user_id: str, goal_id: Optional[int] = None) -> List[MilestoneEntity]:
        sql = "SELECT * FROM milestones WHERE goal_id IN (SELECT id FROM goals WHERE user_id = ?)"
        params: list = [user_id]
        if goal_id is not None:
            sql += " AND goal_id = ?"
            params.append(goal_id)
        sql += " ORDER BY due_date IS NULL, due_date ASC, id ASC"
        with self._conn() as conn:
            return self._fetch_all(conn, "milestones", sql, params)  # type: ignore[return-value]

    # Subscriptions

    def upsert_subscription(self, subscription: SubscriptionEntity) -> SubscriptionEntity:
        columns = _TABLES["subscriptions"]
        names = list(columns)
        updates = ", ".join(f"{n} = excluded.{n}" for n in names if n != "user_id")
        with self._conn() as conn:
            conn.execute(
                f"INSERT INTO subscriptions ({', '.join(names)}) VALUES ({', '.join('?' for _ in names)}) "
                f"ON CONFLICT(user_id) DO UPDATE SET {updates}",
                [_to_db(columns[n], subscription[n]) for n in names],  # type: ignore[literal-required]
            )
            row = self._fetch_one(conn, "subscriptions", "user_id = ?", (subscription["user_id"],))
            assert row is not None
            return row  # type: ignore[return-value]

    def get_subscription(self, user_id: str) -> Optional[SubscriptionEntity]:
        with self._conn() as conn:
            return self._fetch_one(conn, "subscriptions", "user_id = ?", (user_id,))  # type: ignore[return-value]

    def find_subscription(self, stripe_subscription_id: str) -> Optional[SubscriptionEntity]:
        with self._conn() as conn:
            return self._fetch_one(  # type: ignore[return-value]
                conn, "subscriptions", "stripe_subscription_id = ?", (stripe_subscription_id,)
            )
