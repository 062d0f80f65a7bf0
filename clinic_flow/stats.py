from datetime import datetime, time
from typing import Optional

import pandas as pd
from sqlalchemy.orm import Session

from .models import QueueEntry, QueueStatus, TriageLevel, Visit


def _round(value) -> float:
    return round(float(value), 1) if pd.notna(value) else 0.0


def queue_statistics(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Snapshot of the queue for the dashboard.

    Waiting entries count their wait up to `now`; every other status uses
    the recorded actual wait (check-in to call).
    """
    now = now or datetime.now()
    start_of_day = datetime.combine(now.date(), time.min)

    entries = db.query(QueueEntry).all()
    visits_today = db.query(Visit).filter(Visit.check_in_time >= start_of_day).all()

    triage_stats = {level.value: 0 for level in TriageLevel}
    if visits_today:
        df_visits = pd.DataFrame([{"level": v.triage_level.value} for v in visits_today])
        triage_stats.update(df_visits["level"].value_counts().to_dict())

    result = {
        "total": len(entries),
        "by_status": [],
        "visits_today": len(visits_today),
        "triage_stats": {k: int(v) for k, v in triage_stats.items()},
        "average_wait_time": 0.0,
        "longest_wait_time": 0.0,
    }
    if not entries:
        return result

    df = pd.DataFrame([{
        "status": e.status.value,
        "checkin": e.check_in_time,
        "actual_wait": e.actual_wait_time,
    } for e in entries])
    df["checkin"] = pd.to_datetime(df["checkin"], errors="coerce")
    df["actual_wait"] = pd.to_numeric(df["actual_wait"], errors="coerce")

    # waiting rows have no actual wait yet
    df["wait_min"] = df["actual_wait"]
    waiting = df["status"] == QueueStatus.WAITING.value
    df.loc[waiting, "wait_min"] = (pd.Timestamp(now) - df.loc[waiting, "checkin"]).dt.total_seconds() / 60

    grouped = df.groupby("status").agg(count=("status", "size"), avg_wait=("wait_min", "mean"))
    for status in QueueStatus:
        if status.value in grouped.index:
            row = grouped.loc[status.value]
            result["by_status"].append({
                "status": status,
                "count": int(row["count"]),
                "avg_wait_time": _round(row["avg_wait"]),
            })

    completed = df[(df["status"] == QueueStatus.COMPLETED.value) & df["actual_wait"].notna()]
    if not completed.empty:
        result["average_wait_time"] = _round(completed["actual_wait"].mean())
        result["longest_wait_time"] = _round(completed["actual_wait"].max())
    return result
