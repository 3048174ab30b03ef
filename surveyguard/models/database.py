# ==========================================
# surveyguard/models/database.py
"""
SQLAlchemy database models for survey links and quality control
"""
import json
import logging
from datetime import datetime, timezone

from sqlalchemy.ext.hybrid import hybrid_property

from surveyguard import db

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ('COMPLETED', 'DISQUALIFIED', 'QUOTA_FULL', 'TIMEOUT')
VALID_STATUSES = ('PENDING', 'STARTED', 'IN_PROGRESS', 'FLAGGED') + TERMINAL_STATUSES


def utcnow():
    return datetime.now(timezone.utc)


class Project(db.Model):
    """Survey project with its quality-control settings"""
    __tablename__ = 'projects'

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    survey_url = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    # QC settings (JSON)
    settings = db.Column(db.Text, nullable=True)

    links = db.relationship('SurveyLink', backref='project', lazy='dynamic', cascade='all, delete-orphan')
    trap_questions = db.relationship('TrapQuestion', backref='project', lazy='dynamic',
                                     cascade='all, delete-orphan')

    @hybrid_property
    def settings_data(self):
        """Parse settings JSON"""
        if self.settings:
            return json.loads(self.settings)
        return {}

    @settings_data.setter
    def settings_data(self, value):
        """Set settings as JSON"""
        self.settings = json.dumps(value) if value else None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'surveyUrl': self.survey_url,
            'settings': self.settings_data,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


class SurveyLink(db.Model):
    """One respondent link and its lifecycle status"""
    __tablename__ = 'survey_links'
    __table_args__ = (db.UniqueConstraint('project_id', 'uid', name='uq_link_project_uid'),)

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.String(64), db.ForeignKey('projects.id'), nullable=False, index=True)
    uid = db.Column(db.String(64), nullable=False, index=True)
    resp_id = db.Column(db.String(64), nullable=True)
    vendor_id = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(20), default='PENDING', nullable=False)
    device_id = db.Column(db.String(64), nullable=True, index=True)
    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # 'metadata' is reserved on declarative models
    link_metadata = db.Column('metadata', db.Text, nullable=True)

    flags = db.relationship('QualityFlag', backref='link', lazy='dynamic', cascade='all, delete-orphan')
    raw_data = db.relationship('RawDataRecord', backref='link', uselist=False, cascade='all, delete-orphan')

    @hybrid_property
    def metadata_data(self):
        """Parse metadata JSON"""
        if self.link_metadata:
            return json.loads(self.link_metadata)
        return {}

    @metadata_data.setter
    def metadata_data(self, value):
        """Set metadata as JSON"""
        self.link_metadata = json.dumps(value, default=str) if value else None

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def to_dict(self):
        return {
            'projectId': self.project_id,
            'uid': self.uid,
            'respId': self.resp_id,
            'vendorId': self.vendor_id,
            'status': self.status,
            'deviceId': self.device_id,
            'metadata': self.metadata_data,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }


class TrapQuestion(db.Model):
    """Attention-check question in a project's bank"""
    __tablename__ = 'trap_questions'

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.String(64), db.ForeignKey('projects.id'), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    question_type = db.Column(db.String(20), default='TEXT', nullable=False)
    correct_answer = db.Column(db.String(200), nullable=False)
    options = db.Column(db.Text, nullable=True)  # JSON array

    @hybrid_property
    def options_data(self):
        if self.options:
            return json.loads(self.options)
        return []

    @options_data.setter
    def options_data(self, value):
        self.options = json.dumps(value) if value else None

    def to_dict(self):
        return {
            'id': str(self.id),
            'text': self.text,
            'questionType': self.question_type,
            'correctAnswer': self.correct_answer,
            'options': self.options_data,
        }


class QualityFlag(db.Model):
    """One quality/fraud flag attached to a link"""
    __tablename__ = 'quality_flags'

    id = db.Column(db.Integer, primary_key=True)
    link_id = db.Column(db.Integer, db.ForeignKey('survey_links.id'), nullable=False, index=True)
    reason = db.Column(db.String(40), nullable=False, index=True)
    severity = db.Column(db.String(10), nullable=True)
    message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'reason': self.reason,
            'severity': self.severity,
            'message': self.message,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


class RawDataRecord(db.Model):
    """Final quality record and raw signals for a link"""
    __tablename__ = 'raw_data_records'

    id = db.Column(db.Integer, primary_key=True)
    link_id = db.Column(db.Integer, db.ForeignKey('survey_links.id'), nullable=False, unique=True)
    data_quality_score = db.Column(db.Integer, nullable=False)
    security_risk = db.Column(db.String(10), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    record = db.Column(db.Text, nullable=True)            # JSON QualityRecord
    raw_signals = db.Column(db.Text, nullable=True)       # JSON behavior/fingerprint/security/geo
    processing_flags = db.Column(db.Text, nullable=True)  # JSON

    @hybrid_property
    def record_data(self):
        if self.record:
            return json.loads(self.record)
        return {}

    @record_data.setter
    def record_data(self, value):
        self.record = json.dumps(value, default=str) if value else None

    @hybrid_property
    def raw_signals_data(self):
        if self.raw_signals:
            return json.loads(self.raw_signals)
        return {}

    @raw_signals_data.setter
    def raw_signals_data(self, value):
        self.raw_signals = json.dumps(value, default=str) if value else None

    @hybrid_property
    def processing_flags_data(self):
        if self.processing_flags:
            return json.loads(self.processing_flags)
        return {}

    @processing_flags_data.setter
    def processing_flags_data(self, value):
        self.processing_flags = json.dumps(value) if value else None

    def to_dict(self):
        return {
            'dataQualityScore': self.data_quality_score,
            'securityRisk': self.security_risk,
            'record': self.record_data,
            'rawSignals': self.raw_signals_data,
            'processingFlags': self.processing_flags_data,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


def init_db():
    """Initialize database tables"""
    db.create_all()
    logger.info("Database tables created successfully")
