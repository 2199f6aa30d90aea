"""Health monitoring for Almanac CalDAV Server."""

import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from dataclasses import dataclass

from .exceptions import error_handler


@dataclass
class HealthStatus:
    """Health status information."""

    healthy: bool
    timestamp: datetime
    services: Dict[str, bool]
    last_sync: Optional[datetime] = None
    last_error: Dict[str, Any] = None
    error_count: int = 0


class HealthChecker:
    """Health monitoring for the application."""

    def __init__(self, store, data_sync_service):
        self.store = store
        self.data_sync_service = data_sync_service
        self.logger = logging.getLogger(__name__)

    def check_health(self) -> HealthStatus:
        """Check database connectivity and collect sync/error state."""
        timestamp = datetime.now(timezone.utc)
        services = {}

        try:
            services['database'] = self.store.ping()
        except Exception as e:
            services['database'] = False
            error_handler.handle_error(e, "health_check:database")

        last_sync = None
        try:
            last_sync = self.data_sync_service.get_last_sync_time()
        except Exception as e:
            error_handler.handle_error(e, "health_check:last_sync")

        error_stats = error_handler.get_error_stats()
        last_error = None
        if error_stats['last_errors']:
            latest_key = max(error_stats['last_errors'].keys(),
                             key=lambda k: error_stats['last_errors'][k]['timestamp'])
            last_error = error_stats['last_errors'][latest_key]

        return HealthStatus(
            healthy=all(services.values()),
            timestamp=timestamp,
            services=services,
            last_sync=last_sync,
            last_error=last_error,
            error_count=error_stats['total_errors']
        )

    def get_health_summary(self) -> Dict[str, Any]:
        """Get health summary for API responses."""
        try:
            health_status = self.check_health()
        except Exception as e:
            error_handler.handle_error(e, "health_summary")
            return {
                'healthy': False,
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'error': 'Health check failed'
            }

        return {
            'healthy': health_status.healthy,
            'timestamp': health_status.timestamp.isoformat(),
            'services': health_status.services,
            'last_sync': health_status.last_sync.isoformat() if health_status.last_sync else None,
            'last_error': health_status.last_error,
            'error_count': health_status.error_count
        }
