"""
Configuration for the Exam Portal
"""

import os
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).resolve().parent

# Secret key — CHANGE THIS to a random 64-char string in production!
# Generate one: python -c "import secrets; print(secrets.token_hex(32))"
SECRET_KEY = os.environ.get('SECRET_KEY', 'your-secret-key-change-in-production-2024')

# Database configuration — override via environment variables in production
_DEFAULT_DB_PASSWORD = 'root123'
DB_CONFIG = {
    'host':     os.environ.get('DB_HOST',     'localhost'),
    'port':     int(os.environ.get('DB_PORT', 3306)),
    'user':     os.environ.get('DB_USER',     'root'),
    'password': os.environ.get('DB_PASSWORD', _DEFAULT_DB_PASSWORD),
    'database': os.environ.get('DB_NAME',     'exam_portal'),
    'charset':  'utf8mb4',
}

# Connection pool sizing (see database/db.py)
DB_POOL_MIN_CACHED      = int(os.environ.get('DB_POOL_MIN_CACHED', 5))
DB_POOL_MAX_CACHED      = int(os.environ.get('DB_POOL_MAX_CACHED', 20))
DB_POOL_MAX_CONNECTIONS = int(os.environ.get('DB_POOL_MAX_CONNECTIONS', 100))

# Session configuration
SESSION_FILE_DIR = os.environ.get('SESSION_FILE_DIR', os.path.join(BASE_DIR, 'flask_session'))
SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SAMESITE = 'Lax'
SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE', '0').lower() in ('1', 'true', 'yes')
PERMANENT_SESSION_LIFETIME = 60 * 60 * 12  # 12 hours

# Exam rules
QUESTIONS_PER_ATTEMPT = int(os.environ.get('QUESTIONS_PER_ATTEMPT', 20))
EXAM_DURATION_SECONDS = int(os.environ.get('EXAM_DURATION_SECONDS', 900))
LATE_GRACE_SECONDS    = int(os.environ.get('LATE_GRACE_SECONDS', 30))
DEFAULT_TEAM          = os.environ.get('DEFAULT_TEAM', 'A')
MOST_MISSED_LIMIT     = 10
MIN_CHOICES           = 2
MAX_POINTS            = 100
MIN_PASSWORD_LENGTH   = 4

# Login rate limiting (per client IP)
RATE_LIMIT_WINDOW = 300  # 5 minutes
RATE_LIMIT_MAX    = 5    # max failed attempts per IP per window

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

# Production server (Waitress) — threads = concurrent request handlers
WAITRESS_THREADS = int(os.environ.get('WAITRESS_THREADS', 64))
WAITRESS_PORT    = int(os.environ.get('PORT', 5000))
