# run.py
"""
Main application entry point for the SurveyGuard link registry
"""
import os
import logging
from surveyguard import create_app, socketio
from surveyguard.models.database import init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('surveyguard.log'),
        logging.StreamHandler()
    ]
)

app = create_app(os.environ.get('FLASK_CONFIG') or 'development')

if __name__ == '__main__':
    # Initialize database
    with app.app_context():
        uri = app.config['SQLALCHEMY_DATABASE_URI']
        if uri.startswith('sqlite:///') and ':memory:' not in uri:
            os.makedirs(os.path.dirname(uri[len('sqlite:///'):]), exist_ok=True)
        init_db()

    # Run the application with SocketIO support
    socketio.run(
        app,
        debug=False,
        host='127.0.0.1',
        port=5000,
        allow_unsafe_werkzeug=True
    )
