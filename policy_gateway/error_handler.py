"""Error handling helpers: map any exception onto the stable error payload."""
from typing import Any, Dict, Optional, Tuple
import logging

from policy_gateway.errors import (
    ConflictError,
    GatewayError,
    InvalidInputError,
    NotFoundError,
    TransientError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_FAMILY = (
    (NotFoundError, 404),
    (InvalidInputError, 422),
    (ConflictError, 409),
    (TransientError, 503),
)


class ErrorHandler:
    def status_for(self, exc: Exception) -> int:
        for family, status in _STATUS_BY_FAMILY:
            if isinstance(exc, family):
                return status
        return 500

    def handle_exception(self, exc: Exception, context: Optional[Dict[str, Any]] = None) -> Tuple[int, Dict[str, Any]]:
        status = self.status_for(exc)
        if isinstance(exc, GatewayError) and status != 500:
            payload = exc.to_dict()
            if context:
                payload["context"] = {**context, **payload["context"]}
            if status == 503:
                logger.warning("Transient failure: %s %s", exc.kind, exc.message)
            return status, payload

        logger.error("Unhandled exception in policy gateway: %s", exc, exc_info=True)
        return 500, {
            "kind": "INTERNAL_ERROR",
            "message": "An internal error occurred while processing your request. Please try again later.",
            "retryable": False,
            "context": dict(context or {}),
        }
