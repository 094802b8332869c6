"""
Entrypoint: load config and .env, init logging, serve the catalog API
"""

import uvicorn
from dotenv import load_dotenv

from catalog.api import create_app
from catalog.config import Config
from catalog.logs import configure_logging


def main():
    """Initialize dependencies and start the HTTP server"""
    # Environment variables from .env override config.yaml
    load_dotenv()
    config = Config()

    configure_logging(
        level=config.logging.get('level', 'INFO'),
        json_output=config.logging.get('json', True),
    )

    app = create_app(config)
    uvicorn.run(
        app,
        host=config.server.get('host', '0.0.0.0'),
        port=int(config.server.get('port', 8000)),
        log_config=None,
    )


if __name__ == "__main__":
    main()
