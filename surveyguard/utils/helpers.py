# ==========================================
# surveyguard/utils/helpers.py
"""
General helper utilities
"""
import logging
from typing import Any, Dict, Optional

from user_agents import parse as parse_user_agent

logger = logging.getLogger(__name__)


def get_client_ip(request_obj) -> str:
    """Get client IP address from request"""
    try:
        # Proxy / load balancer
        if request_obj.headers.get('X-Forwarded-For'):
            return request_obj.headers.get('X-Forwarded-For').split(',')[0].strip()

        if request_obj.headers.get('X-Real-IP'):
            return request_obj.headers.get('X-Real-IP')

        return request_obj.remote_addr or 'unknown'
    except Exception as e:
        logger.error(f"Error getting client IP: {e}")
        return 'unknown'


def parse_user_agent_details(user_agent_string: str) -> Dict[str, Any]:
    """Parse user agent string into components"""
    try:
        user_agent = parse_user_agent(user_agent_string or '')

        return {
            'browser': str(user_agent.browser.family),
            'browser_version': str(user_agent.browser.version_string),
            'os': str(user_agent.os.family),
            'device': str(user_agent.device.family),
            'is_mobile': user_agent.is_mobile,
            'is_bot': user_agent.is_bot
        }
    except Exception as e:
        logger.error(f"User agent parsing error: {e}")
        return {
            'browser': 'unknown',
            'browser_version': 'unknown',
            'os': 'unknown',
            'device': 'unknown',
            'is_mobile': False,
            'is_bot': False
        }


def build_client_metadata(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Browser, screen and locale details attached to status updates"""
    context = context or {}
    user_agent = context.get('userAgent') or ''
    details = parse_user_agent_details(user_agent) if user_agent else {}

    return {
        'userAgent': truncate_string(user_agent, 200, suffix=''),
        'browser': details.get('browser'),
        'screenSize': context.get('screenSize'),
        'language': context.get('language'),
        'timeZone': context.get('timeZone') or context.get('timezone'),
        'referrer': truncate_string(context.get('referrer') or '', 200, suffix=''),
    }


def truncate_string(text: str, max_length: int = 100, suffix: str = '...') -> str:
    """Truncate string to maximum length"""
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix
