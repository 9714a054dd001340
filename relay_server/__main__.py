"""Run the relay as a standalone server.

    python -m relay_server --config settings.json
    python -m relay_server --config settings.json --host 127.0.0.1 --port 8080
"""

import argparse
import logging

import orjson
import uvicorn

from .config import RelayConfig, config_to_dict, load_config
from .router import create_relay_app

log = logging.getLogger("relay")


def main() -> None:
    parser = argparse.ArgumentParser(description="Realtime relay server")
    parser.add_argument("--config", help="Path to a JSON settings file")
    parser.add_argument("--host", help="Bind address (overrides the settings file)")
    parser.add_argument("--port", type=int, help="Bind port (overrides the settings file)")
    parser.add_argument("--debug", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    config = load_config(args.config) if args.config else RelayConfig()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.debug:
        config.debug = True

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not config.service_key:
        log.warning("No service key configured: management routes are open")
    log.info("Settings: %s", orjson.dumps(config_to_dict(config)).decode())

    app = create_relay_app(config)
    uvicorn.run(app, host=config.host, port=config.port, log_level="debug" if config.debug else "info")


if __name__ == "__main__":
    main()
