"""
Tests for device fingerprint collection
"""
import asyncio

import pytest

from surveyguard.core.fingerprint import (
    ClientReportedProbe, FingerprintCollector, FingerprintProbe, sha256_hex,
)

FULL_REPORT = {
    'canvas': 'data:image/png;base64,AAAA',
    'webgl': {'vendor': 'Intel Inc.', 'renderer': 'Intel Iris OpenGL Engine', 'version': 'WebGL 1.0'},
    'audio': 124.04347527516074,
    'hardware': {'deviceMemory': 8, 'hardwareConcurrency': 8, 'maxTouchPoints': 0},
    'screen': {'width': 1920, 'height': 1080, 'colorDepth': 24},
    'locale': {'language': 'en-US', 'timezone': 'America/New_York'},
    'userAgent': 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36',
    'automation': {'webdriver': False, 'headless': False},
}


class CountingProbe(ClientReportedProbe):
    def __init__(self, report):
        super().__init__(report)
        self.canvas_calls = 0

    async def canvas(self):
        self.canvas_calls += 1
        await asyncio.sleep(0)
        return await super().canvas()


class BrokenProbe(FingerprintProbe):
    """Every reader fails"""

    async def canvas(self):
        raise RuntimeError("canvas blocked")

    async def webgl(self):
        raise RuntimeError("no webgl")

    async def audio(self):
        raise RuntimeError("no audio context")

    async def hardware(self):
        raise RuntimeError("blocked")

    async def screen(self):
        raise RuntimeError("blocked")

    async def locale(self):
        raise RuntimeError("blocked")

    async def user_agent(self):
        raise RuntimeError("blocked")

    async def automation(self):
        raise RuntimeError("blocked")


class TestSha256:

    def test_hex_digest(self):
        assert sha256_hex('abc') == 'ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad'

    def test_empty_values(self):
        assert sha256_hex(None) is None
        assert sha256_hex('') is None


class TestFingerprintCollector:

    @pytest.mark.asyncio
    async def test_full_report(self):
        fingerprint = await FingerprintCollector(ClientReportedProbe(FULL_REPORT)).generate()

        assert fingerprint.screen_resolution == '1920x1080'
        assert fingerprint.color_depth == 24
        assert fingerprint.timezone == 'America/New_York'
        assert fingerprint.webgl_renderer == 'Intel Iris OpenGL Engine'
        assert fingerprint.canvas_fingerprint == sha256_hex(FULL_REPORT['canvas'])
        assert len(fingerprint.device_id) == 64
        assert not fingerprint.automation_suspected

    @pytest.mark.asyncio
    async def test_device_id_is_stable(self):
        first = await FingerprintCollector(ClientReportedProbe(FULL_REPORT)).generate()
        second = await FingerprintCollector(ClientReportedProbe(dict(FULL_REPORT))).generate()
        assert first.device_id == second.device_id

    @pytest.mark.asyncio
    async def test_device_id_changes_with_screen(self):
        other = dict(FULL_REPORT, screen={'width': 1280, 'height': 720, 'colorDepth': 24})
        first = await FingerprintCollector(ClientReportedProbe(FULL_REPORT)).generate()
        second = await FingerprintCollector(ClientReportedProbe(other)).generate()
        assert first.device_id != second.device_id

    @pytest.mark.asyncio
    async def test_missing_sections_degrade_to_none(self):
        report = {'userAgent': FULL_REPORT['userAgent'], 'locale': FULL_REPORT['locale']}
        fingerprint = await FingerprintCollector(ClientReportedProbe(report)).generate()

        assert fingerprint.canvas_fingerprint is None
        assert fingerprint.webgl_fingerprint is None
        assert fingerprint.audio_fingerprint is None
        assert fingerprint.screen_resolution is None
        assert fingerprint.language == 'en-US'
        assert fingerprint.device_id is not None

    @pytest.mark.asyncio
    async def test_everything_failing_still_yields_a_fingerprint(self):
        fingerprint = await FingerprintCollector(BrokenProbe()).generate()
        assert fingerprint.device_id is None
        assert fingerprint.user_agent is None
        assert not fingerprint.automation_suspected

    @pytest.mark.asyncio
    async def test_automation_flags(self):
        report = dict(FULL_REPORT, automation={'webdriver': True, 'headless': False})
        fingerprint = await FingerprintCollector(ClientReportedProbe(report)).generate()
        assert fingerprint.automation_suspected

    @pytest.mark.asyncio
    async def test_result_is_cached(self):
        probe = CountingProbe(FULL_REPORT)
        collector = FingerprintCollector(probe)

        first, second = await asyncio.gather(collector.generate(), collector.generate())
        third = await collector.generate()

        assert probe.canvas_calls == 1
        assert first is second is third
