# ==========================================
# surveyguard/api/websockets.py
"""
WebSocket handlers for the live behavior feed
"""
import logging
from datetime import datetime, timezone

from flask import request
from flask_socketio import emit, join_room, leave_room, disconnect
from flask_jwt_extended import decode_token

from surveyguard import db
from surveyguard.core.behavior_collector import BehaviorCollector, assess_behavior
from surveyguard.models.database import SurveyLink
from surveyguard.utils.validators import validate_behavior_events

logger = logging.getLogger(__name__)

# Store active connections
active_connections = {}


def register_websocket_handlers(socketio_instance):
    """Register all WebSocket event handlers"""

    @socketio_instance.on('connect')
    def handle_connect(auth):
        """Accept respondents holding a session token"""
        if not auth or 'token' not in auth:
            logger.warning("WebSocket connection rejected: No token provided")
            return False

        try:
            claims = decode_token(auth['token'])
        except Exception as e:
            logger.warning(f"WebSocket token rejected: {e}")
            return False

        project_id = claims.get('project_id')
        uid = claims.get('uid')
        if not project_id or not uid:
            return False

        room = f"link_{project_id}_{uid}"
        join_room(room)
        active_connections[request.sid] = {
            'project_id': project_id,
            'uid': uid,
            'room': room,
            'collector': BehaviorCollector(),
            'connected_at': datetime.now(timezone.utc),
        }

        logger.info(f"Behavior feed connected for {project_id}/{uid}")
        emit('connection_established', {
            'projectId': project_id,
            'uid': uid,
            'timestamp': datetime.now(timezone.utc).isoformat()
        })
        return True

    @socketio_instance.on('behavior_events')
    def handle_behavior_events(data):
        """Feed a batch of browser events into the connection's collector"""
        connection = active_connections.get(request.sid)
        if connection is None:
            logger.warning("Behavior events received from unregistered connection")
            disconnect()
            return

        try:
            events = validate_behavior_events((data or {}).get('events'))
            collector = connection['collector']
            accepted = sum(1 for event in events if collector.handle_event(event))

            snapshot = collector.snapshot()
            assessment = assess_behavior(snapshot)
            emit('behavior_snapshot', {
                'accepted': accepted,
                'snapshot': snapshot.to_dict(),
                'suspicious': assessment.suspicious,
            })
        except Exception as e:
            logger.error(f"Behavior event handling error: {e}")
            emit('error', {'message': 'Behavior data rejected'})

    @socketio_instance.on('disconnect')
    def handle_disconnect(*args):
        """Store the final snapshot on the link"""
        connection = active_connections.pop(request.sid, None)
        if connection is None:
            return

        leave_room(connection['room'])
        try:
            snapshot = connection['collector'].snapshot()
            link = SurveyLink.query.filter_by(
                project_id=connection['project_id'], uid=connection['uid']
            ).first()
            if link is not None:
                meta = link.metadata_data
                meta['behavior'] = snapshot.to_dict()
                link.metadata_data = meta
                db.session.commit()
            logger.info(f"Behavior feed closed for {connection['project_id']}/{connection['uid']}")
        except Exception as e:
            logger.error(f"WebSocket disconnect error: {e}")
            db.session.rollback()
