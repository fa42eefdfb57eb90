"""Server entry point: registry, discovery responder and uvicorn."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

import uvicorn
from fastapi import FastAPI

from alpacapi.config import ConfigError, ServerConfig, build_devices
from alpacapi.devices import DeviceRegistry
from alpacapi.discovery import DiscoveryResponder
from alpacapi.observability import configure_logging, get_logger
from alpacapi.web.app import create_app

logger = get_logger(__name__)


@dataclass
class ServerState:
    """The running uvicorn server and its discovery responder.

    Kept together so stop() can reach both from another thread.
    """

    server: uvicorn.Server | None = field(default=None)
    discovery: DiscoveryResponder | None = field(default=None)


class AlpacaServer:
    """One Alpaca server process built from a ServerConfig.

    Example:
        >>> server = AlpacaServer(load_config("alpacapi.jsonc"))
        >>> server.run()  # blocks until Ctrl+C
    """

    def __init__(self, config: ServerConfig, registry: DeviceRegistry | None = None) -> None:
        """Build the registry and application.

        Args:
            config: Validated configuration.
            registry: Pre-built registry. One is built from
                ``config.devices`` when omitted.

        Raises:
            ConfigError: If a device cannot be created.
        """
        self.config = config
        if registry is None:
            registry = DeviceRegistry()
            for entry, device in build_devices(config):
                try:
                    registry.register_device(device, entry.number)
                except ValueError as e:
                    raise ConfigError(str(e)) from e
        self.registry = registry
        self.app: FastAPI = create_app(registry, config, manage_registry=True)
        self.state = ServerState()

    def _start_discovery(self) -> None:
        if not self.config.discovery.enabled:
            logger.info("Discovery disabled")
            return
        responder = DiscoveryResponder(self.config.port, port=self.config.discovery.port)
        try:
            responder.start()
        except OSError as e:
            # The REST API is still usable by address without discovery.
            logger.error(
                "Discovery responder failed to start",
                udp_port=self.config.discovery.port,
                error=str(e),
            )
            return
        self.state.discovery = responder

    def run(self) -> None:
        """Serve until interrupted, then shut everything down."""
        logger.info(
            "Starting Alpaca server",
            host=self.config.host,
            port=self.config.port,
            mode=self.config.mode.value,
            devices=len(self.registry),
        )
        self._start_discovery()
        uvicorn_config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.logging.level.lower(),
            access_log=False,
        )
        self.state.server = uvicorn.Server(uvicorn_config)
        try:
            self.state.server.run()
        finally:
            self.stop()

    def stop(self) -> None:
        """Ask uvicorn to exit and stop discovery. Safe from any thread."""
        if self.state.server is not None:
            self.state.server.should_exit = True
        if self.state.discovery is not None:
            self.state.discovery.stop()
            self.state.discovery = None

    def run_in_thread(self) -> threading.Thread:
        """Run the server on a daemon thread (embedding and tests)."""
        thread = threading.Thread(
            target=self.run, name=f"alpacapi-{self.config.port}", daemon=True
        )
        thread.start()
        return thread


def serve(config: ServerConfig) -> None:
    """Configure logging from ``config`` and run a server until interrupted."""
    configure_logging(
        level=config.logging.level, json_format=config.logging.json, force=True
    )
    AlpacaServer(config).run()


__all__ = ["AlpacaServer", "ServerState", "serve"]
