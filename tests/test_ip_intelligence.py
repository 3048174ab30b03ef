"""
Tests for IP geolocation and VPN lookups
"""
import httpx
import pytest

from surveyguard.services.ip_intelligence import IpIntelligenceClient

PUBLIC_IP = '81.2.69.142'

GEO = {
    'ip': PUBLIC_IP, 'hostname': 'host.example.net', 'city': 'London', 'region': 'England',
    'country': 'GB', 'org': 'AS12345 Example Broadband', 'timezone': 'Europe/London',
}


class Handler:
    def __init__(self, geo=None, privacy=None, status=200):
        self.geo = geo if geo is not None else GEO
        self.privacy = privacy
        self.status = status
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status)
        if request.url.path.endswith('/privacy'):
            return httpx.Response(200, json=self.privacy or {})
        return httpx.Response(200, json=self.geo)


def make_client(handler, token='', clock=None):
    kwargs = {'clock': clock} if clock else {}
    return IpIntelligenceClient(token=token, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
                                **kwargs)


class TestIpIntelligence:

    @pytest.mark.asyncio
    async def test_private_addresses_skipped(self):
        handler = Handler()
        client = make_client(handler)
        assert await client.lookup('192.168.1.10') == (None, None)
        assert await client.lookup('127.0.0.1') == (None, None)
        assert await client.lookup('not-an-ip') == (None, None)
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_geo_without_token_uses_keywords(self):
        handler = Handler()
        geo, vpn = await make_client(handler).lookup(PUBLIC_IP)

        assert geo.country == 'GB'
        assert geo.timezone == 'Europe/London'
        assert not vpn.detected
        assert [r.url.path for r in handler.requests] == [f"/{PUBLIC_IP}/json"]

    @pytest.mark.asyncio
    async def test_vpn_provider_in_org(self):
        handler = Handler(geo=dict(GEO, org='AS9009 NordVPN Datacenter'))
        geo, vpn = await make_client(handler).lookup(PUBLIC_IP)
        assert vpn.vpn
        assert vpn.service == 'nordvpn'
        assert vpn.hosting

    @pytest.mark.asyncio
    async def test_privacy_endpoint_with_token(self):
        handler = Handler(privacy={'vpn': False, 'proxy': True, 'tor': False, 'hosting': False})
        geo, vpn = await make_client(handler, token='tok').lookup(PUBLIC_IP)

        assert vpn.proxy
        assert vpn.detected
        assert all(r.url.params['token'] == 'tok' for r in handler.requests)

    @pytest.mark.asyncio
    async def test_failure_returns_nothing(self):
        geo, vpn = await make_client(Handler(status=503)).lookup(PUBLIC_IP)
        assert geo is None
        assert vpn is None

    @pytest.mark.asyncio
    async def test_results_cached_until_ttl(self, clock):
        handler = Handler()
        client = make_client(handler, clock=clock)

        await client.lookup(PUBLIC_IP)
        await client.lookup(PUBLIC_IP)
        assert len(handler.requests) == 1

        clock.advance(3601)
        await client.lookup(PUBLIC_IP)
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_token_from_app_config(self):
        handler = Handler(privacy={'vpn': True, 'proxy': False, 'tor': False, 'hosting': False})
        client = IpIntelligenceClient.from_app_config(
            {'IPINFO_TOKEN': 'tok'}, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        geo, vpn = await client.lookup(PUBLIC_IP)
        assert vpn.vpn
        assert len(handler.requests) == 2
