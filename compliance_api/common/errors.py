# compliance_api/common/errors.py
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from compliance_api.common.http import fail
from compliance_api.services.compliance_rules import InvalidArgument
from compliance_api.services.storage import FileRejected


class APIError(Exception):
    """Custom API Error class."""
    def __init__(self, code, message, status_code=400, payload=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload


def register_error_handlers(app):
    @app.errorhandler(APIError)
    def _api_error(e: APIError):
        return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)

    @app.errorhandler(InvalidArgument)
    def _invalid(e: InvalidArgument):
        return fail(str(e), status=422, code="INVALID_ARGUMENT")

    @app.errorhandler(FileRejected)
    def _file_rejected(e: FileRejected):
        return fail(str(e), status=422, code="FILE_REJECTED")

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        return fail(e.description or e.name, status=e.code or 500)

    @app.errorhandler(IntegrityError)
    def _dup(e: IntegrityError):
        from compliance_api.extensions import db
        db.session.rollback()
        return fail("Duplicate or FK constraint failed", status=409, code="CONSTRAINT_ERROR")

    @app.errorhandler(Exception)
    def _500(e: Exception):
        app.logger.exception(e)
        return fail("Internal server error", status=500)
