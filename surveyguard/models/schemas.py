"""
Pydantic schemas for API request validation
"""
from typing import Any, Dict

from pydantic import BaseModel, Field, field_validator

from surveyguard.models.database import VALID_STATUSES
from surveyguard.utils.validators import validate_uid


class LinkReference(BaseModel):
    projectId: str = Field(..., min_length=1, max_length=64)
    uid: str = Field(..., min_length=1, max_length=64)

    @field_validator('uid')
    @classmethod
    def check_uid(cls, v):
        if not validate_uid(v):
            raise ValueError('Invalid link identifier')
        return v


class ValidateSessionRequest(LinkReference):
    pass


class FlagRequest(LinkReference):
    gate: str = Field(default='TRAP_QUESTION', pattern=r'^(CAPTCHA|TRAP_QUESTION)$')
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StatusUpdateRequest(LinkReference):
    status: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('status')
    @classmethod
    def check_status(cls, v):
        v = v.upper()
        if v not in VALID_STATUSES:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}")
        return v


class RawDataSubmission(LinkReference):
    record: Dict[str, Any]
    rawSignals: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('record')
    @classmethod
    def check_record(cls, v):
        score = v.get('dataQualityScore')
        if not isinstance(score, int) or not 0 <= score <= 100:
            raise ValueError('dataQualityScore must be an integer between 0 and 100')
        if v.get('securityRisk') not in ('low', 'medium', 'high'):
            raise ValueError('securityRisk must be low, medium or high')
        return v
