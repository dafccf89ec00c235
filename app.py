"""
Exam Portal - Flask Application
Timed multiple-choice exams per team, with admin result review and
wrong-answer analytics.
"""

import logging
import os

from flask import Flask, jsonify
from flask_session import Session

import config
from admin import admin
from api import api
from database.store import ExamStore
from errors import ExamError, UpstreamUnavailable

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


def add_security_headers(response):
    """Add security headers to all responses."""
    response.headers['X-Content-Type-Options']  = 'nosniff'
    response.headers['X-Frame-Options']          = 'DENY'
    response.headers['Referrer-Policy']           = 'strict-origin-when-cross-origin'
    response.headers['Permissions-Policy']        = 'camera=(), microphone=(), geolocation=()'
    response.headers['Content-Security-Policy']   = "default-src 'none'; frame-ancestors 'none'"
    # results and answer keys are private to the caller
    response.headers['Cache-Control']             = 'no-store'
    return response


# ==================== ERROR HANDLERS ====================

def _error(status, code, detail):
    return jsonify({'ok': False, 'error': code, 'detail': detail}), status


def register_error_handlers(app):

    @app.errorhandler(ExamError)
    def exam_error(e):
        if isinstance(e, UpstreamUnavailable):
            logger.error('Upstream unavailable: %s', e.__cause__ or e)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return _error(400, 'BAD_REQUEST', 'Malformed request.')

    @app.errorhandler(404)
    def not_found(e):
        return _error(404, 'NOT_FOUND', 'Not found.')

    @app.errorhandler(405)
    def method_not_allowed(e):
        return _error(405, 'METHOD_NOT_ALLOWED', 'Method not allowed.')

    @app.errorhandler(413)
    def too_large(e):
        return _error(413, 'TOO_LARGE', 'Request body too large.')

    @app.errorhandler(500)
    def server_error(e):
        logger.exception('Internal Server Error: %s', e)
        return _error(500, 'SERVER_ERROR', 'Internal server error.')


# ==================== APP FACTORY ====================

def create_app(store=None, **overrides):
    """Build the app. `store` defaults to the MySQL-backed ExamStore."""
    app = Flask(__name__)
    app.config['SECRET_KEY'] = config.SECRET_KEY
    app.config['MAX_CONTENT_LENGTH'] = 2 * 1024 * 1024  # 2 MB is plenty for answer maps
    app.config['SESSION_TYPE'] = 'filesystem'
    app.config['SESSION_FILE_DIR'] = config.SESSION_FILE_DIR
    app.config['SESSION_COOKIE_HTTPONLY'] = config.SESSION_COOKIE_HTTPONLY
    app.config['SESSION_COOKIE_SAMESITE'] = config.SESSION_COOKIE_SAMESITE
    app.config['SESSION_COOKIE_SECURE'] = config.SESSION_COOKIE_SECURE
    app.config['SESSION_PERMANENT'] = True
    app.config['PERMANENT_SESSION_LIFETIME'] = config.PERMANENT_SESSION_LIFETIME
    app.config['CSRF_ENABLED'] = True
    app.config.update(overrides)

    os.makedirs(app.config['SESSION_FILE_DIR'], exist_ok=True)
    Session(app)

    app.extensions['exam_store'] = store if store is not None else ExamStore()

    app.register_blueprint(api)
    app.register_blueprint(admin)
    app.after_request(add_security_headers)
    register_error_handlers(app)

    @app.route('/')
    def index():
        return jsonify({'ok': True})

    return app


app = create_app()


# ==================== MAIN ====================

if __name__ == '__main__':
    import sys
    prod_mode = '--prod' in sys.argv or os.environ.get('FLASK_ENV') == 'production'

    if prod_mode:
        # ── Production: Waitress WSGI server ──────────────────────────────
        from waitress import serve
        logger.info('Starting production server on port %s with %s threads',
                    config.WAITRESS_PORT, config.WAITRESS_THREADS)
        serve(
            app,
            host='0.0.0.0',
            port=config.WAITRESS_PORT,
            threads=config.WAITRESS_THREADS,
            channel_timeout=120,         # 2-min timeout per request
            connection_limit=2000,       # max open TCP connections
            cleanup_interval=30,
        )
    else:
        # ── Development: Flask debug server (threaded for local testing) ───
        app.run(debug=True, host='0.0.0.0', port=5000, threaded=True)
