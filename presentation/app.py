"""Flask application factory for Almanac CalDAV Server."""

import asyncio
import logging
import time
from concurrent.futures import Future
from datetime import datetime, timezone
from threading import Thread
from typing import Optional

from flask import Flask, request, Response, jsonify

from config import Config
from application import CalDAVService, CalendarService, DataSyncService
from domain import RemoteCalendarRepository
from infrastructure import CalendarStore, RemoteCalDAVRepository
from monitoring import AlmanacError, HealthChecker, error_handler
from .api import API_ROOT, register_api_routes
from .middleware import MethodTunnelMiddleware
from .routes import CALDAV_ROOT, register_caldav_routes


SERVICE_NAME = 'Almanac CalDAV Server'
SERVICE_VERSION = '1.0.0'


class AsyncExecutor:
    """Helper to run async functions in Flask (sync) context."""

    def __init__(self, timeout: float = 30):
        self.timeout = timeout
        self.loop = None
        self._thread = None
        self._setup_event_loop()

    def _setup_event_loop(self):
        """Set up event loop in background thread."""
        def run_loop():
            self.loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self.loop)
            self.loop.run_forever()

        self._thread = Thread(target=run_loop, name='almanac-async', daemon=True)
        self._thread.start()

        # Wait for loop to be ready
        while self.loop is None:
            time.sleep(0.01)

    def run_async(self, coro, timeout: Optional[float] = None):
        """Run async coroutine in background loop and wait for its result."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout=timeout or self.timeout)

    def submit(self, coro) -> Future:
        """Schedule a coroutine without waiting for it."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def shutdown(self):
        if self.loop is not None and self.loop.is_running():
            self.loop.call_soon_threadsafe(self.loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=5)


def create_app(
    config: Config,
    store: Optional[CalendarStore] = None,
    remote: Optional[RemoteCalendarRepository] = None
) -> Flask:
    """Create Flask application with dependency injection."""
    app = Flask(__name__)
    app.config['CONFIG'] = config
    app.wsgi_app = MethodTunnelMiddleware(app.wsgi_app)

    logger = logging.getLogger(__name__)

    # Initialize async executor
    async_executor = AsyncExecutor(timeout=max(30, config.sync.timeout_seconds + 5))

    # Initialize repositories and services
    if store is None:
        store = CalendarStore(config.database.url, echo=config.database.echo)
    store.create_schema()

    if remote is None:
        remote = RemoteCalDAVRepository(
            timeout=config.remote.timeout_seconds,
            user_agent=config.remote.user_agent
        )

    data_sync_service = DataSyncService(store=store, remote=remote)
    caldav_service = CalDAVService(store=store)
    calendar_service = CalendarService(
        store=store,
        sync_service=data_sync_service,
        remote=remote,
        executor=async_executor,
        sync_timeout=config.sync.timeout_seconds
    )
    health_checker = HealthChecker(store, data_sync_service)

    app.extensions['almanac'] = {
        'store': store,
        'executor': async_executor,
        'caldav_service': caldav_service,
        'calendar_service': calendar_service,
        'data_sync_service': data_sync_service,
    }

    # Start background synchronization
    def start_background_sync():
        """Start periodic sync of all accounts."""
        async def sync_loop():
            while True:
                try:
                    result = await calendar_service.trigger_sync()
                    for message in result.errors:
                        logger.warning(f"Background sync: {message}")
                    await asyncio.sleep(config.sync.interval_seconds)
                except Exception as e:
                    error_handler.handle_error(e, "background_sync_loop")
                    await asyncio.sleep(config.sync.retry_delay_seconds)

        async_executor.submit(sync_loop())

    if config.sync.background_enabled:
        start_background_sync()
        logger.info(f"Background sync every {config.sync.interval_seconds}s started")

    # Routes
    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        summary = health_checker.get_health_summary()
        summary.update({
            'service': SERVICE_NAME,
            'version': SERVICE_VERSION,
        })
        return jsonify(summary), 200 if summary.get('healthy') else 503

    # CalDAV service discovery
    @app.route('/.well-known/caldav', methods=['GET', 'PROPFIND'])
    def caldav_discovery():
        """CalDAV service discovery."""
        return Response(status=301, headers={'Location': CALDAV_ROOT})

    register_caldav_routes(app, caldav_service)
    register_api_routes(app, calendar_service, async_executor)

    # Error handlers
    @app.errorhandler(AlmanacError)
    def almanac_error(error):
        if error.http_status >= 500:
            error_handler.handle_error(error, f"request:{request.method} {request.path}")
        if request.path.startswith(API_ROOT):
            return jsonify({'error': error.message}), error.http_status
        return Response(error.message, status=error.http_status, content_type='text/plain; charset=utf-8')

    @app.errorhandler(404)
    def not_found(error):
        return Response(status=404)

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {error}")
        return Response(status=500)

    return app
