"""
Entrypoint: load .env and config, init logging, serve the proxy with uvicorn
"""

import structlog
import uvicorn
from dotenv import load_dotenv

from drive_proxy.config import Config
from drive_proxy.log import configure_logging
from drive_proxy.server import create_app


def main():
    """Load configuration and start serving"""
    # .env must be loaded before Config reads the environment
    load_dotenv()
    config = Config()

    log_config = config.logging
    configure_logging(log_config.get('level', 'INFO'), log_config.get('format', 'json'))
    logger = structlog.get_logger(__name__)

    host = config.server.get('host', '0.0.0.0')
    port = int(config.server.get('port', 4000))
    app = create_app(config)

    logger.info("drive_proxy_listening", url=f"http://localhost:{port}")
    uvicorn.run(app, host=host, port=port, log_config=None, access_log=False)


if __name__ == "__main__":
    main()
