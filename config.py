import os

from dotenv import load_dotenv

load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def _as_bool(value):
    return str(value).lower() in ['true', 'on', '1', 'yes']


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or "sqlite:///" + os.path.join(basedir, "pipelines.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get("SECRET_KEY") or "a-dev-secret-key-that-is-not-so-secret"
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY") or SECRET_KEY

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

    # Flask-Mail configuration
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.gmail.com')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', 587))
    MAIL_USE_TLS = _as_bool(os.environ.get('MAIL_USE_TLS', 'true'))
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER') or MAIL_USERNAME

    # Delayed task queue (APScheduler). Jobs live in the main database unless overridden.
    SCHEDULER_JOBSTORE_URL = os.environ.get("SCHEDULER_JOBSTORE_URL") or SQLALCHEMY_DATABASE_URI
    SCHEDULER_AUTOSTART = _as_bool(os.environ.get("SCHEDULER_AUTOSTART", "true"))
    SCHEDULER_TIMEZONE = os.environ.get("SCHEDULER_TIMEZONE", "UTC")

    # Step retry policy
    PIPELINE_MAX_ATTEMPTS = int(os.environ.get("PIPELINE_MAX_ATTEMPTS", 3))
    PIPELINE_RETRY_BACKOFF_SECONDS = int(os.environ.get("PIPELINE_RETRY_BACKOFF_SECONDS", 300))


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret-key"
    JWT_SECRET_KEY = "test-jwt-secret-key-with-enough-length"

    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = "pipelines@example.com"

    SCHEDULER_JOBSTORE_URL = None
    SCHEDULER_AUTOSTART = False

    PIPELINE_MAX_ATTEMPTS = 3
    PIPELINE_RETRY_BACKOFF_SECONDS = 60
