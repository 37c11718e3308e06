"""
Configuration management for the rewards engine.
"""
import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Reward economy defaults
    VIP_MULTIPLIER = Decimal(os.getenv('VIP_MULTIPLIER', '1.5'))
    POINTS_TO_CASHBACK_RATE = Decimal(os.getenv('POINTS_TO_CASHBACK_RATE', '0.01'))  # 1 point = $0.01
    DEFAULT_MINIMUM_WITHDRAWAL = Decimal(os.getenv('DEFAULT_MINIMUM_WITHDRAWAL', '10.00'))

    # Calendar day used for streaks and daily caps (IANA name)
    REWARD_DAY_TIMEZONE = os.getenv('REWARD_DAY_TIMEZONE', 'UTC')

    # Receipts
    DEFAULT_RECEIPT_CASHBACK_RATE = Decimal(os.getenv('DEFAULT_RECEIPT_CASHBACK_RATE', '0.05'))
    RECEIPT_AUTO_APPROVE_CONFIDENCE = float(os.getenv('RECEIPT_AUTO_APPROVE_CONFIDENCE', '0.8'))

    # Journal
    REFERENCE_ID_MAX_ATTEMPTS = int(os.getenv('REFERENCE_ID_MAX_ATTEMPTS', '5'))

    # Notification collaborator (best-effort HTTP POST)
    NOTIFICATION_SERVICE_URL = os.getenv('NOTIFICATION_SERVICE_URL', '')
    NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv('NOTIFICATION_TIMEOUT_SECONDS', '3'))

    # Back-office endpoints (receipt review, payout settlement)
    INTERNAL_API_KEY = os.getenv('INTERNAL_API_KEY', '')


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///rewards_dev.db'  # SQLite fallback for local dev
    )


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'pool_recycle': 300,
        'pool_pre_ping': True,
    }

    _secret_key = os.getenv('SECRET_KEY', '')

    @classmethod
    def validate_secret_key(cls) -> str:
        """
        Validate SECRET_KEY in production environment.

        Raises:
            RuntimeError: If SECRET_KEY is missing or too weak
        """
        if not cls._secret_key:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable is not set!\n"
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        lower_key = cls._secret_key.lower()
        for pattern in ('dev', 'change', 'default', 'test', 'secret', 'password'):
            if pattern in lower_key:
                raise RuntimeError(
                    f"CRITICAL: SECRET_KEY contains '{pattern}' which suggests it's not secure!"
                )

        if len(cls._secret_key) < 32:
            raise RuntimeError("CRITICAL: SECRET_KEY is too short (minimum 32 characters required)!")

        return cls._secret_key

    SECRET_KEY = _secret_key  # Validated at app startup


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    NOTIFICATION_SERVICE_URL = ''
    INTERNAL_API_KEY = 'test-internal-key'


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_secret_key()
