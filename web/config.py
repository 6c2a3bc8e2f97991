"""
Web server configuration.
"""
from core.config import config

# Web server settings
WEB_HOST = config.web.host
WEB_PORT = config.web.port

VERSION = config.version

# Auth cookie
COOKIE_NAME = "token"
COOKIE_MAX_AGE = config.auth.token_max_age_seconds  # 7 days
COOKIE_SECURE = config.is_production
COOKIE_SAMESITE = "strict" if config.is_production else "lax"

# Rate limits (slowapi syntax)
AUTH_RATE_LIMIT = config.web.auth_rate_limit
OTP_RATE_LIMIT = config.web.otp_rate_limit
API_RATE_LIMIT = config.web.api_rate_limit

CORS_ORIGINS = config.web.cors_origins
