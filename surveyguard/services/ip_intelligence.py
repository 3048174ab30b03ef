"""
IP geolocation and VPN/proxy lookups
"""
import ipaddress
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from surveyguard.core.signals import GeoSignal, VpnSignal

logger = logging.getLogger(__name__)

VPN_PROVIDERS = [
    'nordvpn', 'expressvpn', 'surfshark', 'cyberghost', 'privateinternetaccess',
    'protonvpn', 'windscribe', 'tunnelbear', 'ipvanish', 'purevpn',
    'hidemyass', 'vypr', 'strongvpn', 'mullvad', 'opera vpn',
]

HOSTING_KEYWORDS = [
    'hosting', 'server', 'cloud', 'datacenter', 'data center',
    'virtual', 'vps', 'dedicated', 'colocation', 'colo',
    'amazon', 'google', 'microsoft', 'digital ocean', 'digitalocean',
    'vultr', 'linode', 'ovh', 'hetzner', 'scaleway',
]

LookupResult = Tuple[Optional[GeoSignal], Optional[VpnSignal]]


class IpIntelligenceClient:
    """ipinfo.io lookups with a one-hour in-memory cache.

    Failures return None signals; callers treat them as "not evaluated".
    """

    def __init__(self, token: str = '', client: Optional[httpx.AsyncClient] = None,
                 base_url: str = 'https://ipinfo.io', cache_ttl: float = 3600,
                 clock: Callable[[], float] = time.time):
        self.token = token
        self.client = client or httpx.AsyncClient(timeout=5.0)
        self.base_url = base_url.rstrip('/')
        self.cache_ttl = cache_ttl
        self.clock = clock
        self._cache: Dict[str, Tuple[float, LookupResult]] = {}

    @classmethod
    def from_app_config(cls, app_config: Dict[str, Any], **kwargs) -> 'IpIntelligenceClient':
        """Client using the IPINFO_TOKEN setting; without a token only keyword checks run"""
        return cls(token=app_config.get('IPINFO_TOKEN') or '', **kwargs)

    @staticmethod
    def is_public(ip: str) -> bool:
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return not (address.is_private or address.is_loopback or address.is_reserved
                    or address.is_link_local or address.is_multicast)

    async def lookup(self, ip: str) -> LookupResult:
        if not self.is_public(ip):
            return None, None

        cached = self._cache.get(ip)
        if cached and self.clock() - cached[0] < self.cache_ttl:
            return cached[1]

        geo = await self._geo(ip)
        vpn = await self._privacy(ip, geo)
        if geo is not None or vpn is not None:
            self._cache[ip] = (self.clock(), (geo, vpn))
        return geo, vpn

    async def _get(self, path: str) -> Optional[Dict[str, Any]]:
        params = {'token': self.token} if self.token else None
        try:
            response = await self.client.get(f"{self.base_url}{path}", params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.warning(f"IP lookup {path} failed: {e}")
        except ValueError as e:
            logger.warning(f"IP lookup {path} returned invalid JSON: {e}")
        return None

    async def _geo(self, ip: str) -> Optional[GeoSignal]:
        data = await self._get(f"/{ip}/json")
        if data is None:
            return None
        return GeoSignal(
            ip=ip,
            country=data.get('country'),
            region=data.get('region'),
            city=data.get('city'),
            org=data.get('org'),
            hostname=data.get('hostname'),
            timezone=data.get('timezone'),
        )

    async def _privacy(self, ip: str, geo: Optional[GeoSignal]) -> Optional[VpnSignal]:
        data = await self._get(f"/{ip}/privacy") if self.token else None
        hosting_hint, service = self._keyword_match(geo)

        if data is None:
            if geo is None:
                return None
            return VpnSignal(vpn=service is not None, hosting=hosting_hint, service=service)

        return VpnSignal(
            vpn=bool(data.get('vpn')) or service is not None,
            proxy=bool(data.get('proxy')),
            tor=bool(data.get('tor')),
            hosting=bool(data.get('hosting')) or hosting_hint,
            service=data.get('service') or service,
        )

    @staticmethod
    def _keyword_match(geo: Optional[GeoSignal]) -> Tuple[bool, Optional[str]]:
        if geo is None:
            return False, None
        text = ' '.join(filter(None, [geo.org, geo.hostname])).lower()
        provider = next((p for p in VPN_PROVIDERS if p in text), None)
        hosting = any(k in text for k in HOSTING_KEYWORDS)
        return hosting, provider

    async def aclose(self):
        await self.client.aclose()
