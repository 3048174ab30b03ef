"""
Device fingerprint collection for duplicate-respondent detection
"""
import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from surveyguard.core.signals import Fingerprint

logger = logging.getLogger(__name__)


def sha256_hex(value: Any) -> Optional[str]:
    if value is None or value == '':
        return None
    if isinstance(value, (list, tuple)):
        value = ','.join(str(v) for v in value)
    return hashlib.sha256(str(value).encode('utf-8')).hexdigest()


class FingerprintProbe(ABC):
    """Source of raw browser/runtime capabilities.

    Each reader may raise; the collector treats a failure as an absent field.
    """

    @abstractmethod
    async def canvas(self) -> Optional[str]:
        ...

    @abstractmethod
    async def webgl(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def audio(self) -> Any:
        ...

    @abstractmethod
    async def hardware(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def screen(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def locale(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def user_agent(self) -> Optional[str]:
        ...

    @abstractmethod
    async def automation(self) -> Dict[str, Any]:
        ...


class ClientReportedProbe(FingerprintProbe):
    """Probe backed by the raw capability report a browser posts"""

    def __init__(self, report: Dict[str, Any]):
        self.report = report or {}

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.report.get(name)
        if section is None:
            raise LookupError(f"{name} not reported")
        if not isinstance(section, dict):
            raise TypeError(f"{name} must be an object")
        return section

    async def canvas(self):
        if 'canvas' not in self.report:
            raise LookupError("canvas not reported")
        return self.report['canvas']

    async def webgl(self):
        return self._section('webgl')

    async def audio(self):
        if 'audio' not in self.report:
            raise LookupError("audio not reported")
        return self.report['audio']

    async def hardware(self):
        return self._section('hardware')

    async def screen(self):
        return self._section('screen')

    async def locale(self):
        return self._section('locale')

    async def user_agent(self):
        return self.report.get('userAgent')

    async def automation(self):
        return self._section('automation')


class FingerprintCollector:
    """Computes one fingerprint per session and caches it"""

    SIGNALS = ('canvas', 'webgl', 'audio', 'hardware', 'screen', 'locale', 'user_agent', 'automation')

    def __init__(self, probe: FingerprintProbe):
        self.probe = probe
        self._task: Optional[asyncio.Task] = None

    async def generate(self) -> Fingerprint:
        if self._task is None:
            self._task = asyncio.ensure_future(self._collect())
        return await asyncio.shield(self._task)

    async def _collect(self) -> Fingerprint:
        readers = [getattr(self.probe, name)() for name in self.SIGNALS]
        results = await asyncio.gather(*readers, return_exceptions=True)

        raw = {}
        for name, result in zip(self.SIGNALS, results):
            if isinstance(result, Exception):
                logger.debug(f"Fingerprint signal {name} unavailable: {result}")
                raw[name] = None
            else:
                raw[name] = result

        webgl = raw['webgl'] or {}
        hardware = raw['hardware'] or {}
        screen = raw['screen'] or {}
        locale = raw['locale'] or {}
        automation = raw['automation'] or {}

        screen_resolution = None
        if screen.get('width') and screen.get('height'):
            screen_resolution = f"{screen['width']}x{screen['height']}"

        webgl_renderer = webgl.get('renderer')
        fields = dict(
            canvas_fingerprint=sha256_hex(raw['canvas']),
            webgl_fingerprint=sha256_hex(
                '|'.join(str(webgl.get(k, '')) for k in ('vendor', 'renderer', 'version'))
            ) if webgl else None,
            audio_fingerprint=sha256_hex(raw['audio']),
            webgl_vendor=webgl.get('vendor'),
            webgl_renderer=webgl_renderer,
            device_memory=hardware.get('deviceMemory'),
            hardware_concurrency=hardware.get('hardwareConcurrency'),
            max_touch_points=hardware.get('maxTouchPoints'),
            screen_resolution=screen_resolution,
            color_depth=screen.get('colorDepth'),
            language=locale.get('language'),
            timezone=locale.get('timezone'),
            user_agent=raw['user_agent'],
            webdriver=automation.get('webdriver'),
            headless=automation.get('headless'),
        )
        fields['device_id'] = self._device_id(fields)
        return Fingerprint(**fields)

    @staticmethod
    def _device_id(fields: Dict[str, Any]) -> Optional[str]:
        components = [
            fields['user_agent'],
            fields['screen_resolution'],
            fields['color_depth'],
            fields['language'],
            fields['timezone'],
            fields['hardware_concurrency'],
            fields['max_touch_points'],
            fields['webgl_renderer'],
        ]
        if all(c is None for c in components):
            return None
        return sha256_hex('|'.join('' if c is None else str(c) for c in components))
