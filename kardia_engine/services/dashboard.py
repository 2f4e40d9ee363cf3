"""
Dashboard summary projection.

Pure transformation of a user's assessment rows (newest first, as cached by
RiskAssessmentRepository.list_for_dashboard) into the dashboard payload:
summary with health trend, a 30-day graph series and the history list.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from kardia_engine.models.conversation import utcnow

TREND_THRESHOLD = 0.1
GRAPH_WINDOW_DAYS = 30


def calculate_trend(latest: Dict[str, Any], previous: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Direction of change between the two newest assessments."""
    if previous is None:
        return {"direction": "stable", "change_value": 0, "text": "This is your first assessment."}

    diff = latest["final_risk_percentage"] - previous["final_risk_percentage"]
    change_text = f"{abs(round(diff, 2)):g}% from the previous assessment"

    if diff < -TREND_THRESHOLD:
        return {"direction": "improving", "change_value": round(diff, 2), "text": f"Improved {change_text}"}
    if diff > TREND_THRESHOLD:
        return {"direction": "worsening", "change_value": round(diff, 2), "text": f"Worsened {change_text}"}
    return {"direction": "stable", "change_value": 0, "text": "Stable since the previous assessment."}


def format_graph_data(rows: List[Dict[str, Any]], now: datetime) -> Dict[str, List[Any]]:
    """Assessments from the last 30 days, oldest first."""
    since = now - timedelta(days=GRAPH_WINDOW_DAYS)
    recent = [r for r in reversed(rows) if datetime.fromisoformat(r["created_at"]) >= since]
    return {
        "labels": [f"{datetime.fromisoformat(r['created_at']):%d %b}" for r in recent],
        "values": [r["final_risk_percentage"] for r in recent],
    }


def build_dashboard(rows: List[Dict[str, Any]], now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """
    Build the dashboard payload.

    Args:
        rows: Assessment rows, newest first
        now: Reference time for the graph window (naive UTC)

    Returns:
        Dashboard dict, or None when the user has no assessments
    """
    if not rows:
        return None
    now = now or utcnow()

    latest = rows[0]
    previous = rows[1] if len(rows) > 1 else None

    summary = {
        "total_assessments": len(rows),
        "last_assessment_date": latest["created_at"],
        "latest_status": {
            "category_code": latest.get("category_code") or "N/A",
            "category_title": latest.get("category_title") or "N/A",
        },
        "health_trend": calculate_trend(latest, previous),
    }

    history = []
    for row in rows:
        created = datetime.fromisoformat(row["created_at"])
        history.append({
            "id": row["id"],
            "date": f"{created.day} {created:%B %Y}",
            "risk_percentage": row["final_risk_percentage"],
            "risk_category": row.get("category_title") or "N/A",
        })

    return {
        "summary": summary,
        "graph_data_30_days": format_graph_data(rows, now),
        "latest_assessment_details": latest.get("result_details"),
        "assessment_history": history,
    }
