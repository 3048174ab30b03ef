"""
Registry interface consumed by the quality pipeline
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from surveyguard.core.signals import QualityRecord


@dataclass
class ValidationResult:
    allowed: bool
    redirect: Optional[str] = None
    token: Optional[str] = None
    reason: Optional[str] = None


class Registry(ABC):
    """Persistence backend for links, statuses, flags and raw data.

    Every call is an independent write or read; the pipeline assumes no
    transactional guarantees across calls.
    """

    @abstractmethod
    async def validate_session(self, project_id: str, uid: str) -> ValidationResult:
        ...

    @abstractmethod
    async def record_challenge_failure(self, project_id: str, uid: str, gate: str,
                                       metadata: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def update_session_status(self, project_id: str, uid: str, status: str,
                                    metadata: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def submit_quality_record(self, project_id: str, uid: str, record: QualityRecord,
                                    raw_signals: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def fetch_trap_questions(self, project_id: str) -> List[Dict[str, Any]]:
        ...

    async def count_device_sightings(self, project_id: str, device_id: str,
                                     exclude_uid: str) -> Optional[int]:
        """Number of other links in the project seen with this device; None if unknown"""
        return None

    async def fetch_project_settings(self, project_id: str) -> Dict[str, Any]:
        return {}
