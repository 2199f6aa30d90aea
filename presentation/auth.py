"""HTTP Basic authentication for the CalDAV endpoint and JSON API."""

import hmac
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import Response, current_app, request


logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    """Outcome of checking one request; ``response`` is set when it is refused."""

    authenticated: bool
    response: Optional[Response] = None


def _matches(given: Optional[str], expected: str) -> bool:
    return hmac.compare_digest((given or '').encode('utf-8'), expected.encode('utf-8'))


def authenticate_request(req, caldav_config) -> AuthResult:
    """Check Basic credentials against the single configured principal.

    Without configured credentials every request is refused with 503.
    """
    if not caldav_config.username or not caldav_config.password:
        logger.warning("CalDAV credentials are not configured, refusing request")
        return AuthResult(False, Response('CalDAV server not configured', status=503))

    auth = req.authorization
    if (auth is None or auth.type != 'basic'
            or not _matches(auth.username, caldav_config.username)
            or not _matches(auth.password, caldav_config.password)):
        return AuthResult(False, Response(
            'Authentication required',
            401,
            {'WWW-Authenticate': f'Basic realm="{caldav_config.realm}"'}
        ))

    return AuthResult(True)


def requires_auth(f):
    """Authentication decorator."""
    @wraps(f)
    def decorated(*args, **kwargs):
        result = authenticate_request(request, current_app.config['CONFIG'].caldav)
        if not result.authenticated:
            return result.response
        return f(*args, **kwargs)
    return decorated
