#!/usr/bin/env python3
"""Almanac CalDAV Server - startup script."""

import logging

from config import load_config
from presentation import create_app


def main():
    """Main entry point."""
    try:
        config = load_config()
        config.setup_logging()
        logger = logging.getLogger('almanac')

        if not config.caldav.configured:
            logger.warning("CALDAV_USERNAME/CALDAV_PASSWORD are not set; every CalDAV request will answer 503")

        app = create_app(config)

        logger.info("Starting Almanac CalDAV Server...")
        logger.info(f"CalDAV URL: http://{config.server.host}:{config.server.port}/api/caldav/")

        app.run(
            host=config.server.host,
            port=config.server.port,
            debug=config.server.debug,
            use_reloader=False  # one background sync loop per process
        )

    except KeyboardInterrupt:
        print("\nShutting down server...")
    except Exception as e:
        print(f"Failed to start server: {e}")
        raise


if __name__ == '__main__':
    main()
