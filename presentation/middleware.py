"""WSGI middleware for clients that cannot send WebDAV verbs directly."""

import logging


TUNNELED_METHODS = frozenset({'PROPFIND', 'REPORT'})


class MethodTunnelMiddleware:
    """Turn ``POST`` + ``X-Original-Method: PROPFIND|REPORT`` into the real verb.

    Runs before routing, so the tunneled request reaches the same handler as
    a native one. Other ``X-Original-Method`` values are ignored.
    """

    def __init__(self, wsgi_app):
        self.wsgi_app = wsgi_app
        self.logger = logging.getLogger(__name__)

    def __call__(self, environ, start_response):
        if environ.get('REQUEST_METHOD', '').upper() == 'POST':
            original = environ.get('HTTP_X_ORIGINAL_METHOD', '').strip().upper()
            if original in TUNNELED_METHODS:
                environ['REQUEST_METHOD'] = original
                self.logger.debug(f"Tunneled {original} {environ.get('PATH_INFO', '')}")
        return self.wsgi_app(environ, start_response)
