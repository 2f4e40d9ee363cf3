"""Repository for risk assessment operations."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from kardia_engine.cache import keys
from kardia_engine.cache.store import CacheStore
from kardia_engine.cache.views import ViewCache
from kardia_engine.db.database import commit_or_fail
from kardia_engine.models.conversation import RiskAssessment
from kardia_engine.services.context_assembly import AssessmentSummary

logger = logging.getLogger(__name__)


def assessment_to_dict(assessment: RiskAssessment) -> Dict[str, Any]:
    return {
        "id": assessment.id,
        "created_at": assessment.created_at.isoformat(),
        "final_risk_percentage": assessment.final_risk_percentage,
        "model_used": assessment.model_used,
        "category_code": assessment.risk_category("code"),
        "category_title": assessment.risk_category("title"),
        "result_details": assessment.result_details,
    }


class RiskAssessmentRepository:
    """
    Handle database operations for risk assessments.

    Two cached views depend on a user's assessments: the recent-assessment
    digest used for reply context and the dashboard list. Both are dropped
    on every create or report attachment.
    """

    def __init__(
        self,
        db: Session,
        cache: CacheStore,
        digest_size: int = 3,
        digest_ttl_seconds: int = 3600,
        dashboard_ttl_seconds: int = 900,
    ):
        self.db = db
        self.views = ViewCache(cache)
        self.digest_size = digest_size
        self.digest_ttl_seconds = digest_ttl_seconds
        self.dashboard_ttl_seconds = dashboard_ttl_seconds

    def create(
        self,
        user_id: str,
        final_risk_percentage: float,
        model_used: Optional[str] = None,
        inputs: Optional[Dict[str, Any]] = None,
        generated_values: Optional[Dict[str, Any]] = None,
    ) -> RiskAssessment:
        """Record a numeric assessment result; the report is attached later."""
        assessment = RiskAssessment(
            user_id=user_id,
            final_risk_percentage=final_risk_percentage,
            model_used=model_used,
            inputs=inputs,
            generated_values=generated_values,
            result_details=None,
        )
        self.db.add(assessment)
        commit_or_fail(self.db, f"create risk assessment for user {user_id}")
        self.views.invalidate(keys.assessment_dependents(user_id), reason="assessment created")
        return assessment

    def get(self, assessment_id: str) -> Optional[RiskAssessment]:
        return self.db.query(RiskAssessment).filter(RiskAssessment.id == assessment_id).first()

    def attach_report(self, assessment: RiskAssessment, report: Dict[str, Any]) -> RiskAssessment:
        """Store the personalized report as the assessment's result details."""
        assessment.result_details = report
        commit_or_fail(self.db, f"attach report to assessment {assessment.id}")
        self.views.invalidate(keys.assessment_dependents(assessment.user_id), reason="report attached")
        return assessment

    def list_recent_summaries(self, user_id: str, limit: int = 3) -> List[AssessmentSummary]:
        """
        Newest-first summaries for reply context.

        The digest holds ``digest_size`` rows; larger requests bypass the cache.
        """
        if limit <= 0:
            return []
        if limit > self.digest_size:
            return [self._summary(a) for a in self._query_recent(user_id, limit)]

        rows = self.views.remember(
            keys.recent_assessments_key(user_id),
            self.digest_ttl_seconds,
            lambda: [
                {
                    "assessed_at": a.created_at.isoformat(),
                    "risk_percentage": a.final_risk_percentage,
                    "category": a.risk_category("title"),
                }
                for a in self._query_recent(user_id, self.digest_size)
            ],
        )
        return [
            AssessmentSummary(
                assessed_at=datetime.fromisoformat(row["assessed_at"]),
                risk_percentage=row["risk_percentage"],
                category=row["category"],
            )
            for row in rows[:limit]
        ]

    def list_for_dashboard(self, user_id: str) -> List[Dict[str, Any]]:
        """All of the user's assessments, newest first. Cached."""
        return self.views.remember(
            keys.dashboard_key(user_id),
            self.dashboard_ttl_seconds,
            lambda: [assessment_to_dict(a) for a in self._query_recent(user_id, None)],
        )

    def _query_recent(self, user_id: str, limit: Optional[int]) -> List[RiskAssessment]:
        query = (
            self.db.query(RiskAssessment)
            .filter(RiskAssessment.user_id == user_id)
            .order_by(RiskAssessment.created_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    @staticmethod
    def _summary(assessment: RiskAssessment) -> AssessmentSummary:
        return AssessmentSummary(
            assessed_at=assessment.created_at,
            risk_percentage=assessment.final_risk_percentage,
            category=assessment.risk_category("title"),
        )
