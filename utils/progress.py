from __future__ import annotations

from datetime import date
from typing import Optional

from models.goal import StudyGoal, StudyProgress


def _today_key(today: Optional[date]) -> str:
    return (today or date.today()).isoformat()


def _save_progress(conn, progress: StudyProgress) -> None:
    cursor = conn.cursor()
    cursor.execute(
        """
        INSERT INTO study_progress (id, goal_type, goal_target, progress, date)
        VALUES (1, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            goal_type = excluded.goal_type,
            goal_target = excluded.goal_target,
            progress = excluded.progress,
            date = excluded.date
        """,
        (
            progress.goal.type,
            progress.goal.target,
            progress.progress,
            progress.date,
        ),
    )
    conn.commit()


def get_study_progress(conn, today: Optional[date] = None) -> Optional[StudyProgress]:
    """Read the persisted goal progress, rolling a stale daily counter over to today.

    This is the only place a daily counter is reset.
    """
    cursor = conn.cursor()
    cursor.execute(
        "SELECT goal_type, goal_target, progress, date FROM study_progress WHERE id = 1"
    )
    row = cursor.fetchone()
    if not row:
        return None
    progress = StudyProgress(
        goal=StudyGoal(type=row["goal_type"], target=int(row["goal_target"])),
        progress=int(row["progress"]),
        date=row["date"],
    )
    today_key = _today_key(today)
    if progress.goal.type == "daily" and progress.date != today_key:
        progress = progress.model_copy(update={"progress": 0, "date": today_key})
        _save_progress(conn, progress)
    return progress


def set_study_goal(conn, goal: StudyGoal, today: Optional[date] = None) -> StudyProgress:
    progress = StudyProgress(goal=goal, progress=0, date=_today_key(today))
    _save_progress(conn, progress)
    return progress


def update_study_progress(conn, new_progress: int, today: Optional[date] = None) -> Optional[StudyProgress]:
    """Persist a new daily counter value. Only daily goals keep a counter."""
    progress = get_study_progress(conn, today)
    if not progress or progress.goal.type != "daily":
        return None
    progress = progress.model_copy(update={"progress": new_progress, "date": _today_key(today)})
    _save_progress(conn, progress)
    return progress


def crossed_target(before: int, after: int, target: int) -> bool:
    """True only for the increment that first reaches ``target``."""
    return before < target <= after


def clear_study_goal(conn) -> None:
    """Forget the persisted goal; session goals are never stored."""
    conn.execute("DELETE FROM study_progress WHERE id = 1")
    conn.commit()
