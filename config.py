"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Remote store (quotes, change orders, invoices, product templates)
    FIELDOPS_API_URL = os.getenv('FIELDOPS_API_URL', 'http://localhost:3001')
    FIELDOPS_API_TOKEN = os.getenv('FIELDOPS_API_TOKEN')
    FIELDOPS_API_TIMEOUT = float(os.getenv('FIELDOPS_API_TIMEOUT', '10'))

    # Quote defaults
    QUOTE_DEFAULT_CLIENT_MESSAGE = os.getenv(
        'QUOTE_DEFAULT_CLIENT_MESSAGE',
        'Thank you for considering our services. We look forward to working with you.'
    )
    QUOTE_DEFAULT_DISCLAIMER = os.getenv(
        'QUOTE_DEFAULT_DISCLAIMER',
        'This quote is valid for the next 30 days, after which values may be subject to change.'
    )
    DEFAULT_TAX_RATE = float(os.getenv('DEFAULT_TAX_RATE', '0'))

    # Redis Cache Configuration
    # Read-only catalog data and invoice lookups
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_TEMPLATES_TTL = int(os.getenv('CACHE_TEMPLATES_TTL', '300'))
    CACHE_INVOICE_TTL = int(os.getenv('CACHE_INVOICE_TTL', '30'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'fieldops')


class TestConfig(Config):
    """Configuration used by the test suite."""

    TESTING = True
    DEBUG = False
    CACHE_ENABLED = False
    FIELDOPS_API_URL = 'http://store.test'
    FIELDOPS_API_TOKEN = 'test-token'
