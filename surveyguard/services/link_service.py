# ==========================================
# surveyguard/services/link_service.py
"""
Server-side registry operations for survey links
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from flask import current_app

from surveyguard import db
from surveyguard.core.signals import FlagReason, Severity, SurveyConfig
from surveyguard.models.database import (
    Project, QualityFlag, RawDataRecord, SurveyLink, TERMINAL_STATUSES, TrapQuestion,
)

logger = logging.getLogger(__name__)

OUTCOME_REDIRECTS = {
    'COMPLETED': '/thank-you-completed',
    'QUOTA_FULL': '/sorry-quota-full',
    'DISQUALIFIED': '/sorry-disqualified',
}

GATE_FLAGS = {
    'CAPTCHA': FlagReason.CAPTCHA_FAILURE,
    'TRAP_QUESTION': FlagReason.TRAP_QUESTION_FAILED,
}


class StatusConflict(Exception):
    """A different terminal status was sent for a link that already finished"""


class LinkService:
    """Link lookups and writes backing the registry endpoints"""

    def get_link(self, project_id: str, uid: str) -> Optional[SurveyLink]:
        return SurveyLink.query.filter_by(project_id=project_id, uid=uid).first()

    def validate(self, project_id: str, uid: str) -> Dict[str, Any]:
        link = self.get_link(project_id, uid)
        if link is None:
            return {'allowed': False, 'reason': 'link_not_found'}

        if link.status in OUTCOME_REDIRECTS:
            query = urlencode({'projectId': project_id, 'uid': uid})
            return {
                'allowed': False,
                'reason': 'already_finished',
                'redirect': f"{OUTCOME_REDIRECTS[link.status]}?{query}",
            }
        if link.status == 'TIMEOUT':
            return {'allowed': False, 'reason': 'already_finished'}

        return {'allowed': True, 'link': link.to_dict()}

    def flag(self, link: SurveyLink, gate: str, metadata: Dict[str, Any]) -> SurveyLink:
        reason = GATE_FLAGS.get(gate, FlagReason.TRAP_QUESTION_FAILED)

        meta = link.metadata_data
        meta.update({
            'flagReason': reason.value,
            'flaggedAt': datetime.now(timezone.utc).isoformat(),
            'flagGate': gate,
        })
        if metadata:
            meta['flagDetails'] = metadata
        link.metadata_data = meta
        if not link.is_terminal:
            link.status = 'FLAGGED'

        db.session.add(QualityFlag(
            link_id=link.id,
            reason=reason.value,
            severity=reason.severity.value,
            message=f"{gate} failed",
        ))
        db.session.commit()
        logger.info(f"Link {link.project_id}/{link.uid} flagged: {reason.value}")
        return link

    def update_status(self, link: SurveyLink, status: str, metadata: Dict[str, Any]) -> bool:
        """Apply a status; returns False when nothing changed.

        Terminal statuses are final: repeating one is a no-op, replacing one
        raises StatusConflict.
        """
        if link.is_terminal:
            if status == link.status:
                return False
            raise StatusConflict(f"Link {link.uid} is already {link.status}")

        if status == link.status:
            return False

        meta = link.metadata_data
        if metadata:
            meta.setdefault('statusHistory', []).append({
                'status': status,
                'at': datetime.now(timezone.utc).isoformat(),
                'details': metadata,
            })
        link.metadata_data = meta
        link.status = status
        db.session.commit()
        logger.info(f"Link {link.project_id}/{link.uid} status -> {status}")
        return True

    def submit_raw_data(self, link: SurveyLink, record: Dict[str, Any],
                        raw_signals: Dict[str, Any]) -> bool:
        """Store the final quality record once; later submissions are ignored"""
        if link.raw_data is not None:
            return False

        flags = record.get('flags') or []
        raw = RawDataRecord(
            link_id=link.id,
            data_quality_score=record['dataQualityScore'],
            security_risk=record['securityRisk'],
        )
        raw.record_data = record
        raw.raw_signals_data = raw_signals
        raw.processing_flags_data = {
            'flagCount': len(flags),
            'processedAt': datetime.now(timezone.utc).isoformat(),
            'hasFingerprint': bool((raw_signals.get('fingerprint') or {}).get('device_id')),
            'hasGeo': bool(raw_signals.get('geo')),
        }
        db.session.add(raw)

        details = record.get('details') or {}
        for flag in flags:
            reason = flag.get('reason') if isinstance(flag, dict) else str(flag)
            try:
                severity = FlagReason(reason).severity.value
            except ValueError:
                severity = Severity.LOW.value
            db.session.add(QualityFlag(
                link_id=link.id,
                reason=reason,
                severity=severity,
                message=details.get(reason),
            ))

        device_id = (raw_signals.get('fingerprint') or {}).get('device_id')
        if device_id:
            link.device_id = device_id

        db.session.commit()
        logger.info(f"Quality record stored for {link.project_id}/{link.uid}: "
                    f"score {raw.data_quality_score}, {len(flags)} flags")
        return True

    def count_device_sightings(self, project_id: str, device_id: str, exclude_uid: str) -> int:
        return SurveyLink.query.filter(
            SurveyLink.project_id == project_id,
            SurveyLink.device_id == device_id,
            SurveyLink.uid != exclude_uid,
        ).count()

    def trap_questions(self, project_id: str) -> List[Dict[str, Any]]:
        return [q.to_dict() for q in TrapQuestion.query.filter_by(project_id=project_id).all()]

    def project_settings(self, project_id: str) -> Optional[Dict[str, Any]]:
        project = db.session.get(Project, project_id)
        if project is None:
            return None
        merged = dict(current_app.config.get('SURVEY_DEFAULTS', {}))
        merged.setdefault('completionDomain', current_app.config.get('COMPLETION_DOMAIN'))
        merged.update(project.settings_data)
        return SurveyConfig.from_dict(merged).to_dict()

    def flags_for(self, link: SurveyLink) -> List[Dict[str, Any]]:
        return [f.to_dict() for f in link.flags.order_by(QualityFlag.created_at).all()]
