"""
Configuration for Lattice360
Environment-specific settings, loaded from environment variables / .env
"""
import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration"""
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-me')

    # Session
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = True
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)

    # Rate limiting (Flask-Limiter syntax)
    RATE_LIMIT_DEFAULT = os.environ.get('RATE_LIMIT_DEFAULT', '300 per hour')
    RATE_LIMIT_LOGIN = os.environ.get('RATE_LIMIT_LOGIN', '10 per minute')
    RATE_LIMIT_SIGNUP = os.environ.get('RATE_LIMIT_SIGNUP', '5 per minute')
    RATE_LIMIT_AI = os.environ.get('RATE_LIMIT_AI', '30 per minute')
    LOGIN_MAX_ATTEMPTS = int(os.environ.get('LOGIN_MAX_ATTEMPTS', 5))
    LOGIN_WINDOW_MINUTES = int(os.environ.get('LOGIN_WINDOW_MINUTES', 15))

    # Mail (parent link verification codes)
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.gmail.com')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', 587))
    MAIL_USE_TLS = os.environ.get('MAIL_USE_TLS', 'True').lower() == 'true'
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER', 'noreply@lattice360.app')

    # LLM
    GEMINI_API_KEY = os.environ.get('GEMINI_API_KEY')
    GEMINI_MODEL = os.environ.get('GEMINI_MODEL', 'models/gemini-2.5-flash')

    # Portal
    INSTITUTION_ID = os.environ.get('INSTITUTION_ID', 'NMIMS')
    LINK_CODE_TTL_MINUTES = int(os.environ.get('LINK_CODE_TTL_MINUTES', 15))
    LINK_CODE_MAX_ATTEMPTS = int(os.environ.get('LINK_CODE_MAX_ATTEMPTS', 5))
    SOFTENED_NOTE_CACHE_TTL = int(os.environ.get('SOFTENED_NOTE_CACHE_TTL', 3600))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    DEBUG = False
    TESTING = False

    @classmethod
    def init_app(cls, app):
        app.config.from_object(cls)


class DevelopmentConfig(Config):
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    DEBUG = False
    SESSION_COOKIE_SECURE = True

    @classmethod
    def init_app(cls, app):
        super().init_app(app)
        if app.config['SECRET_KEY'] == 'dev-secret-key-change-me':
            from utils import logger
            logger.warning("insecure_secret_key", environment='production')


class TestingConfig(Config):
    TESTING = True
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    SECRET_KEY = 'test-secret-key'
    MAIL_SUPPRESS_SEND = True
    GEMINI_API_KEY = None


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig,
}
