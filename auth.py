"""
Session/identity gate.

Login stores only the employee id in the server-side session. Every protected
route resolves that id against the accounts table on each request, so a
deactivated account loses access immediately.
"""

import logging
import secrets
from collections import namedtuple
from datetime import datetime
from functools import wraps

import bcrypt
from flask import current_app, g, request, session

import config
from errors import AccountDisabled, Forbidden, RateLimited, Unauthenticated

logger = logging.getLogger(__name__)

ROLE_EXAMINEE = 'examinee'
ROLE_ADMIN = 'admin'
ROLES = (ROLE_EXAMINEE, ROLE_ADMIN)

Identity = namedtuple('Identity', ['account_id', 'role', 'team', 'active', 'name'])


def get_store():
    return current_app.extensions['exam_store']


# ==================== PASSWORDS ====================

def hash_password(plain):
    return bcrypt.hashpw(plain.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def check_password(plain, password_hash):
    if not plain or not password_hash:
        return False
    try:
        return bcrypt.checkpw(plain.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


# ==================== LOGIN RATE LIMIT ====================

# Simple in-memory rate limiting for login (prevents brute force)
_login_attempts = {}


def check_rate_limit(ip):
    """Check if IP has exceeded login attempts."""
    now = datetime.now().timestamp()
    if ip not in _login_attempts:
        return True
    # Clean old attempts
    recent = [t for t in _login_attempts.get(ip, ()) if now - t < config.RATE_LIMIT_WINDOW]
    _login_attempts[ip] = recent
    return len(recent) < config.RATE_LIMIT_MAX


def _prune_login_attempts(now):
    """Drop expired timestamps for every IP, and IPs left with none."""
    for ip in list(_login_attempts):
        recent = [t for t in _login_attempts.get(ip, ()) if now - t < config.RATE_LIMIT_WINDOW]
        if recent:
            _login_attempts[ip] = recent
        else:
            _login_attempts.pop(ip, None)


def record_login_attempt(ip, success):
    """Record login attempt. Clear on success."""
    now = datetime.now().timestamp()
    _prune_login_attempts(now)
    if success:
        _login_attempts.pop(ip, None)
        return
    _login_attempts.setdefault(ip, []).append(now)


def reset_rate_limits():
    _login_attempts.clear()


# ==================== CSRF ====================

def generate_csrf_token():
    """Generate CSRF token for the current session."""
    if 'csrf_token' not in session:
        session['csrf_token'] = secrets.token_hex(32)
    return session['csrf_token']


def validate_csrf():
    """Validate CSRF token from the X-CSRF-Token header or a form field."""
    if not current_app.config.get('CSRF_ENABLED', True):
        return
    token = request.headers.get('X-CSRF-Token') or request.form.get('csrf_token')
    if not token or not secrets.compare_digest(str(token), str(session.get('csrf_token', ''))):
        raise Forbidden('Invalid CSRF token.')


# ==================== IDENTITY ====================

def identity_from_account(account):
    return Identity(
        account_id=account['emp_id'],
        role=account['role'],
        team=(account.get('team') or '').strip() or config.DEFAULT_TEAM,
        active=account['is_active'],
        name=account.get('name'),
    )


def resolve_identity(store, emp_id):
    """Resolve a session employee id to an active Identity."""
    if not emp_id:
        raise Unauthenticated()
    account = store.get_account(emp_id)
    if account is None:
        raise Unauthenticated('Your session is no longer valid. Please log in again.')
    identity = identity_from_account(account)
    if not identity.active:
        raise AccountDisabled()
    return identity


def login(store, emp_id, password, client_ip):
    """Verify credentials and open a session. Returns the Identity."""
    if not check_rate_limit(client_ip):
        raise RateLimited()

    account = store.get_account(emp_id)
    if account is None or not check_password(password, account.get('password_hash')):
        record_login_attempt(client_ip, False)
        logger.warning('Failed login for %s from %s', emp_id, client_ip)
        raise Unauthenticated('Invalid employee id or password.')
    if not account['is_active']:
        raise AccountDisabled()

    record_login_attempt(client_ip, True)
    session.clear()
    session['emp_id'] = account['emp_id']
    session.permanent = True
    logger.info('Login: %s (%s)', account['emp_id'], account['role'])
    return identity_from_account(account)


def logout():
    session.clear()


# ==================== DECORATORS ====================

def identity_required(f):
    """Resolve the caller once and expose it as g.identity."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.identity = resolve_identity(get_store(), session.get('emp_id'))
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Decorator to require an active admin account."""
    @wraps(f)
    @identity_required
    def decorated_function(*args, **kwargs):
        if g.identity.role != ROLE_ADMIN:
            raise Forbidden('Administrator access required.')
        return f(*args, **kwargs)
    return decorated_function
