"""
Script to run the analytics proxy server with hot reload.
"""

import os
from pathlib import Path

import uvicorn


def main():
    """Run the server with hot reload enabled."""
    # Load environment variables from .env file
    env_path = Path(__file__).parent / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(env_path)

    from analytics_proxy.core.logging import setup_logging
    from analytics_proxy.settings import Settings

    setup_logging()
    settings = Settings()
    reload = os.getenv("ANALYTICS_PROXY_RELOAD", "true").lower() == "true"

    # Only use SSL in development when certificates are present
    ssl_args = {}
    cert_dir = Path(__file__).parent / "certs"
    ssl_keyfile = cert_dir / "localhost.key"
    ssl_certfile = cert_dir / "fullchain.crt"
    if ssl_keyfile.exists() and ssl_certfile.exists():
        ssl_args.update({"ssl_keyfile": str(ssl_keyfile), "ssl_certfile": str(ssl_certfile)})

    uvicorn.run(
        "analytics_proxy.main:create_app",
        factory=True,
        host=settings.get_app_host(),
        port=settings.get_app_port(),
        reload=reload,
        reload_dirs=["analytics_proxy"],  # Only watch our package directory
        log_level="debug",
        log_config=None,
        **ssl_args,
    )


if __name__ == "__main__":
    main()
