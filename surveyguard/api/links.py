# ==========================================
# surveyguard/api/links.py
"""
Link registry endpoints used by the respondent flow
"""
import logging

from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from pydantic import ValidationError

from surveyguard import db
from surveyguard.models.schemas import FlagRequest, StatusUpdateRequest, ValidateSessionRequest
from surveyguard.services.link_service import LinkService, StatusConflict
from surveyguard.utils.helpers import get_client_ip
from surveyguard.utils.security import issue_session_token, token_matches, token_scope

logger = logging.getLogger(__name__)
links_bp = Blueprint('links', __name__)
link_service = LinkService()


def validation_error(e: ValidationError):
    return jsonify({
        'error': 'Invalid request',
        'details': e.errors(include_url=False, include_context=False, include_input=False),
    }), 400


@links_bp.route('/validate', methods=['POST'])
def validate_session():
    """Check that a link may start a session and issue its session token"""
    try:
        data = ValidateSessionRequest(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return validation_error(e)

    try:
        result = link_service.validate(data.projectId, data.uid)
        if not result['allowed']:
            code = 404 if result.get('reason') == 'link_not_found' else 200
            return jsonify(result), code

        link = link_service.get_link(data.projectId, data.uid)
        link.ip_address = get_client_ip(request)
        db.session.commit()

        result['token'] = issue_session_token(data.projectId, data.uid)
        return jsonify(result), 200

    except Exception as e:
        logger.error(f"Session validation error: {e}")
        db.session.rollback()
        return jsonify({'allowed': False, 'error': 'Validation failed'}), 500


@links_bp.route('/flag', methods=['POST'])
@jwt_required()
def flag_link():
    """Record a failed challenge gate against a link"""
    try:
        data = FlagRequest(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return validation_error(e)

    if not token_matches(data.projectId, data.uid):
        return jsonify({'error': 'Token does not match link'}), 403

    try:
        link = link_service.get_link(data.projectId, data.uid)
        if not link:
            return jsonify({'error': 'Link not found'}), 404

        link = link_service.flag(link, data.gate, data.metadata)
        return jsonify({'success': True, 'status': link.status}), 200

    except Exception as e:
        logger.error(f"Flag error: {e}")
        db.session.rollback()
        return jsonify({'error': 'Failed to flag link'}), 500


@links_bp.route('/update-status', methods=['POST'])
@jwt_required()
def update_status():
    """Apply a status transition reported by the completion monitor"""
    try:
        data = StatusUpdateRequest(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return validation_error(e)

    if not token_matches(data.projectId, data.uid):
        return jsonify({'error': 'Token does not match link'}), 403

    try:
        link = link_service.get_link(data.projectId, data.uid)
        if not link:
            return jsonify({'error': 'Link not found'}), 404

        changed = link_service.update_status(link, data.status, data.metadata)
        return jsonify({'success': True, 'changed': changed, 'status': link.status}), 200

    except StatusConflict as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 409
    except Exception as e:
        logger.error(f"Status update error: {e}")
        db.session.rollback()
        return jsonify({'error': 'Failed to update status'}), 500


def _project_allowed(project_id):
    return token_scope()['project_id'] == project_id


@links_bp.route('/projects/<project_id>/questions', methods=['GET'])
@jwt_required()
def trap_questions(project_id):
    if not _project_allowed(project_id):
        return jsonify({'error': 'Token does not match project'}), 403
    try:
        return jsonify({'questions': link_service.trap_questions(project_id)}), 200
    except Exception as e:
        logger.error(f"Trap question fetch error: {e}")
        return jsonify({'error': 'Failed to load questions'}), 500


@links_bp.route('/projects/<project_id>/settings', methods=['GET'])
@jwt_required()
def project_settings(project_id):
    if not _project_allowed(project_id):
        return jsonify({'error': 'Token does not match project'}), 403
    try:
        settings = link_service.project_settings(project_id)
        if settings is None:
            return jsonify({'error': 'Project not found'}), 404
        return jsonify({'settings': settings}), 200
    except Exception as e:
        logger.error(f"Settings fetch error: {e}")
        return jsonify({'error': 'Failed to load settings'}), 500


@links_bp.route('/projects/<project_id>/devices/<device_id>/sightings', methods=['GET'])
@jwt_required()
def device_sightings(project_id, device_id):
    if not _project_allowed(project_id):
        return jsonify({'error': 'Token does not match project'}), 403
    try:
        exclude_uid = request.args.get('excludeUid', token_scope()['uid'])
        count = link_service.count_device_sightings(project_id, device_id, exclude_uid)
        return jsonify({'count': count}), 200
    except Exception as e:
        logger.error(f"Device sighting lookup error: {e}")
        return jsonify({'error': 'Lookup failed'}), 500
