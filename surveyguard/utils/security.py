"""
Security utilities for session tokens
"""
import logging
import secrets
from typing import Any, Dict, Optional

from flask_jwt_extended import create_access_token, get_jwt

logger = logging.getLogger(__name__)


def generate_session_nonce() -> str:
    return secrets.token_urlsafe(32)


def issue_session_token(project_id: str, uid: str) -> str:
    """JWT scoped to one project/link pair, used by the respondent's page"""
    return create_access_token(
        identity=f"{project_id}:{uid}",
        additional_claims={
            'project_id': project_id,
            'uid': uid,
            'nonce': generate_session_nonce(),
        },
    )


def token_scope() -> Dict[str, Optional[str]]:
    """Project and uid claims of the JWT on the current request"""
    claims = get_jwt()
    return {'project_id': claims.get('project_id'), 'uid': claims.get('uid')}


def token_matches(project_id: Any, uid: Any) -> bool:
    scope = token_scope()
    return scope['project_id'] == project_id and scope['uid'] == uid
