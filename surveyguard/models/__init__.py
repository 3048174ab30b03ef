"""
Models package initialization
"""
from .database import Project, SurveyLink, TrapQuestion, QualityFlag, RawDataRecord

__all__ = ['Project', 'SurveyLink', 'TrapQuestion', 'QualityFlag', 'RawDataRecord']
