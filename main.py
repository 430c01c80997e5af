"""Self-service portal: register your address on access-control resources."""

import os
import sys
from typing import Optional, TextIO

from portal.bootstrap.config import DEFAULT_VERSION, LookupEnv, load_config
from portal.bootstrap.logging_setup import configure_logging
from portal.domain.correlation_id import child_logger
from portal.lifecycle.orchestrator import Orchestrator, install_signal_handlers
from portal.pipeline.router import route
from portal.upstream.client import ResourceClient


def run(
    lookup_env: LookupEnv,
    stream: Optional[TextIO] = None,
    version: Optional[str] = None,
) -> None:
    """Configure the process from the environment and serve until stopped."""
    config, credentials = load_config(lookup_env)
    version = version or lookup_env("VERSION") or DEFAULT_VERSION

    logger = configure_logging(
        config.log_level, config.log_destination, config.log_json, stream
    )
    client = ResourceClient(
        credentials,
        timeout=config.upstream_timeout,
        logger=child_logger(logger, "upstream"),
    )
    orchestrator = Orchestrator(
        config, route(logger, version, client), logger, version=version
    )
    install_signal_handlers(orchestrator)
    orchestrator.run()


def main() -> None:
    """Run the portal, exiting non-zero with the error text on failure."""
    try:
        run(os.environ.get, sys.stdout)
    except Exception as error:  # pylint: disable=broad-except
        print(error, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
