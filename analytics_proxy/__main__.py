"""
Main entry point for running the analytics proxy server.
"""

import uvicorn

from analytics_proxy.core.logging import setup_logging
from analytics_proxy.main import create_app
from analytics_proxy.settings import Settings


def main():
    """Run the proxy server."""
    setup_logging()
    settings = Settings()

    ssl_args = {}
    ssl_keyfile = settings.get_ssl_keyfile()
    ssl_certfile = settings.get_ssl_certfile()
    if ssl_keyfile and ssl_certfile:
        ssl_args.update({"ssl_keyfile": ssl_keyfile, "ssl_certfile": ssl_certfile})

    uvicorn.run(
        create_app(settings),
        host=settings.get_app_host(),
        port=settings.get_app_port(),
        log_level=settings.get_log_level().lower(),
        log_config=None,
        **ssl_args,
    )


if __name__ == "__main__":
    main()
