import os
from datetime import timedelta


class Config:
    """Base configuration class"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'a-very-secret-key'
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'a-super-secret-jwt-key'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=2)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # External services
    IPINFO_TOKEN = os.environ.get('IPINFO_TOKEN') or ''
    REGISTRY_URL = os.environ.get('REGISTRY_URL') or 'http://127.0.0.1:5000'
    REGISTRY_TIMEOUT = float(os.environ.get('REGISTRY_TIMEOUT') or 5.0)
    OUTCOME_REDIRECT_DELAY = float(os.environ.get('OUTCOME_REDIRECT_DELAY') or 2.0)
    COMPLETION_DOMAIN = os.environ.get('COMPLETION_DOMAIN') or 'protegeresearchsurvey.com'

    # Project settings fall back to these
    SURVEY_DEFAULTS = {
        'difficulty': 'easy',
        'minCompletionTime': 60,
        'maxCompletionTime': 3600,
        'blacklistedDomains': [],
        'enableVPNDetection': True,
        'enableTrapQuestions': True,
        'enableSpeedChecks': True,
        'enableHoneypot': True,
        'qualityFloor': 50,
    }

    @staticmethod
    def init_app(app):
        pass


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        'sqlite:///' + os.path.join(os.path.abspath(os.path.dirname(__file__)), 'database/surveyguard_dev.db')


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('TEST_DATABASE_URL') or 'sqlite:///:memory:'
    OUTCOME_REDIRECT_DELAY = 0.0


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(os.path.abspath(os.path.dirname(__file__)), 'database/surveyguard.db')


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
