"""
Quality-control data endpoints
"""
import logging

from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from pydantic import ValidationError

from surveyguard import db
from surveyguard.api.links import validation_error
from surveyguard.models.schemas import RawDataSubmission
from surveyguard.services.link_service import LinkService
from surveyguard.utils.security import token_matches, token_scope

logger = logging.getLogger(__name__)
qc_bp = Blueprint('qc', __name__)
link_service = LinkService()


@qc_bp.route('/raw-data/submit', methods=['POST'])
@jwt_required()
def submit_raw_data():
    """Store the final quality record and raw signals for a session"""
    try:
        data = RawDataSubmission(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return validation_error(e)

    if not token_matches(data.projectId, data.uid):
        return jsonify({'error': 'Token does not match link'}), 403

    try:
        link = link_service.get_link(data.projectId, data.uid)
        if not link:
            return jsonify({'error': 'Link not found'}), 404

        stored = link_service.submit_raw_data(link, data.record, data.rawSignals)
        return jsonify({'success': True, 'stored': stored}), 201 if stored else 200

    except Exception as e:
        logger.error(f"Raw data submission error: {e}")
        db.session.rollback()
        return jsonify({'error': 'Failed to store raw data'}), 500


@qc_bp.route('/projects/<project_id>/flags', methods=['GET'])
@jwt_required()
def link_flags(project_id):
    """Flags recorded for the link the token belongs to"""
    scope = token_scope()
    if scope['project_id'] != project_id:
        return jsonify({'error': 'Token does not match project'}), 403
    try:
        link = link_service.get_link(project_id, scope['uid'])
        if not link:
            return jsonify({'error': 'Link not found'}), 404
        return jsonify({'uid': link.uid, 'flags': link_service.flags_for(link)}), 200
    except Exception as e:
        logger.error(f"Flag listing error: {e}")
        return jsonify({'error': 'Failed to load flags'}), 500
