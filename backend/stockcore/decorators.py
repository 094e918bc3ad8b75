# Overview: Service-boundary decorators converting domain errors into operation results.

from functools import wraps

from flask import current_app

from .errors import OperationResult, StockcoreError
from .extensions import db


def returns_result(action: str):
    """
    Wrap a public service operation so callers receive an OperationResult.

    - Expected failures (StockcoreError) roll back the session and come back
      as OperationResult(success=False, message=..., error_code=...).
    - Anything else rolls back, is logged with a traceback, and propagates.

    The wrapped function returns either an OperationResult (passed through)
    or a payload, which is wrapped as OperationResult.ok(payload).

    Usage:
        @returns_result("delete product")
        def delete_product(product_id, force=False): ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                outcome = f(*args, **kwargs)
            except StockcoreError as exc:
                db.session.rollback()
                current_app.logger.warning("Failed to %s: %s", action, exc.message)
                return OperationResult.failure(exc)
            except Exception:
                db.session.rollback()
                current_app.logger.exception("Failed to %s", action)
                raise

            if isinstance(outcome, OperationResult):
                return outcome
            return OperationResult.ok(outcome)

        return decorated_function

    return decorator
