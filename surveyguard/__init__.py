# ==========================================
# surveyguard/__init__.py
"""
Application factory and configuration
"""
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_socketio import SocketIO
from flask_jwt_extended import JWTManager
from flask_cors import CORS

# Initialize extensions
db = SQLAlchemy()
socketio = SocketIO(cors_allowed_origins="*")
jwt = JWTManager()


def create_app(config_name='development'):
    """Create and configure Flask application"""
    app = Flask(__name__)

    # Load configuration
    from surveyguard.config import config
    app.config.from_object(config[config_name])

    # Initialize extensions
    db.init_app(app)
    socketio.init_app(app)
    jwt.init_app(app)
    CORS(app)

    # Register blueprints
    from surveyguard.api.links import links_bp
    from surveyguard.api.qc import qc_bp
    from surveyguard.api.websockets import register_websocket_handlers

    app.register_blueprint(links_bp, url_prefix='/api/links')
    app.register_blueprint(qc_bp, url_prefix='/api/qc')

    # Register WebSocket handlers
    register_websocket_handlers(socketio)

    @app.route('/health')
    def health():
        return {'status': 'ok'}

    return app
