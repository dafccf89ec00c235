"""
Error taxonomy shared by the gate, the exam lifecycle and the reports.
Each error knows the HTTP status and the machine-readable code it maps to.
"""


class ExamError(Exception):
    status_code = 500
    code = 'SERVER_ERROR'
    default_detail = 'Internal server error.'

    def __init__(self, detail=None, **extra):
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail
        self.extra = extra

    def to_dict(self):
        payload = {'ok': False, 'error': self.code, 'detail': self.detail}
        payload.update(self.extra)
        return payload


class Unauthenticated(ExamError):
    status_code = 401
    code = 'UNAUTHENTICATED'
    default_detail = 'Please log in first.'


class Forbidden(ExamError):
    status_code = 403
    code = 'FORBIDDEN'
    default_detail = 'You are not allowed to access this resource.'


class AccountDisabled(Forbidden):
    code = 'ACCOUNT_DISABLED'
    default_detail = 'This account has been deactivated.'


class InvalidRole(Forbidden):
    """Caller is authenticated but holds the wrong role for the operation."""
    code = 'INVALID_ROLE'
    default_detail = 'This account cannot take exams.'


class NotFound(ExamError):
    status_code = 404
    code = 'NOT_FOUND'
    default_detail = 'Not found.'


class InvalidInput(ExamError):
    status_code = 400
    code = 'INVALID_INPUT'
    default_detail = 'Invalid request.'


class NoQuestionsAvailable(InvalidInput):
    code = 'NO_QUESTIONS'
    default_detail = 'No exam is available for your team right now.'


class Conflict(ExamError):
    status_code = 409
    code = 'CONFLICT'
    default_detail = 'Resource already exists.'


class AttemptInProgress(Conflict):
    code = 'ATTEMPT_IN_PROGRESS'
    default_detail = 'This attempt has not been submitted yet.'


class RateLimited(ExamError):
    status_code = 429
    code = 'TOO_MANY_ATTEMPTS'
    default_detail = 'Too many login attempts. Try again later.'


class UpstreamUnavailable(ExamError):
    status_code = 503
    code = 'UPSTREAM_UNAVAILABLE'
    default_detail = 'The service is temporarily unavailable. Please retry shortly.'
