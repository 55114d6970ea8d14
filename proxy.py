"""Run the gateway with uvicorn.

Usage:
    python proxy.py [--config configs/config_default.yaml]
"""

import argparse
import logging

import uvicorn

from oai_gateway.config_loader import build_settings, load_config
from oai_gateway.core.exceptions import ConfigurationError
from oai_gateway.gateway import build_gateway
from oai_gateway.main import create_app

logger = logging.getLogger("oai-gateway")


def main() -> int:
    parser = argparse.ArgumentParser(description="OpenAI Responses API gateway")
    parser.add_argument("--config", help="Path to the YAML config file")
    args = parser.parse_args()

    try:
        settings = build_settings(load_config(args.config))
    except ConfigurationError as exc:
        logger.error("%s", exc.message)
        return 1

    app = create_app(gateway=build_gateway(settings))
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
