"""
HTTP client for the link/session registry
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from surveyguard.core.registry import Registry, ValidationResult
from surveyguard.core.signals import QualityRecord, RegistryError

logger = logging.getLogger(__name__)


class HttpRegistryClient(Registry):
    """Registry implementation talking to the links/qc HTTP endpoints.

    The session token returned by validation is sent as a bearer token on
    every later call.
    """

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 5.0):
        self.base_url = base_url.rstrip('/')
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.token: Optional[str] = None

    @classmethod
    def from_app_config(cls, app_config: Dict[str, Any],
                        client: Optional[httpx.AsyncClient] = None) -> 'HttpRegistryClient':
        return cls(app_config.get('REGISTRY_URL') or 'http://127.0.0.1:5000', client=client,
                   timeout=float(app_config.get('REGISTRY_TIMEOUT') or 5.0))

    def _headers(self) -> Dict[str, str]:
        if self.token:
            return {'Authorization': f"Bearer {self.token}"}
        return {}

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self.client.request(
                method, f"{self.base_url}{path}", headers=self._headers(), **kwargs
            )
            response.raise_for_status()
            return response.json() if response.content else {}
        except httpx.HTTPError as e:
            logger.error(f"Registry {method} {path} failed: {e}")
            raise RegistryError(str(e)) from e

    async def validate_session(self, project_id: str, uid: str) -> ValidationResult:
        try:
            response = await self.client.post(
                f"{self.base_url}/api/links/validate",
                json={'projectId': project_id, 'uid': uid},
            )
        except httpx.HTTPError as e:
            logger.error(f"Registry validation request failed: {e}")
            raise RegistryError(str(e)) from e

        # 404/403 carry a structured refusal
        if response.status_code in (403, 404):
            data = response.json()
            return ValidationResult(allowed=False, reason=data.get('reason'), redirect=data.get('redirect'))
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Registry validation failed: {e}")
            raise RegistryError(str(e)) from e

        data = response.json()
        result = ValidationResult(
            allowed=bool(data.get('allowed')),
            redirect=data.get('redirect'),
            token=data.get('token'),
            reason=data.get('reason'),
        )
        if result.token:
            self.token = result.token
        return result

    async def record_challenge_failure(self, project_id: str, uid: str, gate: str,
                                       metadata: Dict[str, Any]) -> None:
        await self._request('POST', '/api/links/flag', json={
            'projectId': project_id, 'uid': uid, 'gate': gate, 'metadata': metadata,
        })

    async def update_session_status(self, project_id: str, uid: str, status: str,
                                    metadata: Dict[str, Any]) -> None:
        await self._request('POST', '/api/links/update-status', json={
            'projectId': project_id, 'uid': uid, 'status': status, 'metadata': metadata,
        })

    async def submit_quality_record(self, project_id: str, uid: str, record: QualityRecord,
                                    raw_signals: Dict[str, Any]) -> None:
        await self._request('POST', '/api/qc/raw-data/submit', json={
            'projectId': project_id, 'uid': uid,
            'record': record.to_dict(), 'rawSignals': raw_signals,
        })

    async def fetch_trap_questions(self, project_id: str) -> List[Dict[str, Any]]:
        data = await self._request('GET', f"/api/links/projects/{project_id}/questions")
        return data.get('questions', [])

    async def count_device_sightings(self, project_id: str, device_id: str,
                                     exclude_uid: str) -> Optional[int]:
        data = await self._request(
            'GET', f"/api/links/projects/{project_id}/devices/{device_id}/sightings",
            params={'excludeUid': exclude_uid},
        )
        return data.get('count')

    async def fetch_project_settings(self, project_id: str) -> Dict[str, Any]:
        data = await self._request('GET', f"/api/links/projects/{project_id}/settings")
        return data.get('settings', {})

    async def aclose(self):
        await self.client.aclose()
