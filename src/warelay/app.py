"""Application bootstrap: creates shared components and runs everything.

This is the single place that wires sessions, relays and the HTTP server
together from config.
"""

from __future__ import annotations

import asyncio
import sys

from loguru import logger

from warelay.auth.token import TokenProvider
from warelay.config import AppConfig, SessionConfig, get_config
from warelay.errors import InitError
from warelay.handler.channels.base import BaseSessionTransport
from warelay.handler.channels.bridge import BridgeTransport
from warelay.handler.session.pairing import PairingHandler, attach_lifecycle_handlers
from warelay.handler.session.session import SessionManager, SessionRegistry
from warelay.media.bridge import MediaBridge
from warelay.relay.inbound import InboundRelay
from warelay.relay.reply import ReplyDispatcher


class Application:
    """Top-level application that owns all major components.

    Architecture:
        SessionRegistry (label → SessionManager)
            ├── PairingHandler / log_status  (lifecycle events)
            ├── InboundRelay                 (message events → webhook)
            └── ReplyDispatcher              (/reply → sends)
        TokenProvider, MediaBridge           (shared collaborators)
    """

    def __init__(self, config: AppConfig | None = None) -> None:
        self._config = config or get_config()
        relay_cfg = self._config.relay

        # Shared collaborators
        self.tokens = TokenProvider(
            self._config.service_account, timeout=relay_cfg.http_timeout
        )
        self.media = MediaBridge(self._config.cloudinary, timeout=relay_cfg.http_timeout)
        self.pairing = PairingHandler(self.media)

        self.sessions = SessionRegistry()
        self.dispatchers: dict[str, ReplyDispatcher] = {}
        self.relays: dict[str, InboundRelay] = {}
        self._start_task: asyncio.Task | None = None

        for session_cfg in self._config.get_enabled_sessions().values():
            self.add_session(session_cfg)

        if not self._config.relay.webhook_url:
            logger.warning("WEBHOOK_URL is not set; inbound messages will not be relayed")

    def _build_transport(self, session_cfg: SessionConfig) -> BaseSessionTransport:
        return BridgeTransport(
            label=session_cfg.label,
            bridge_url=session_cfg.bridge_url,
            timeout=self._config.relay.bridge_timeout,
            config=session_cfg.extra,
        )

    def add_session(
        self,
        session_cfg: SessionConfig,
        transport: BaseSessionTransport | None = None,
    ) -> SessionManager:
        """Create a session and wire its relay, dispatcher and lifecycle handlers."""
        label = session_cfg.label
        session = SessionManager(label, transport or self._build_transport(session_cfg))
        self.sessions.add(session)

        attach_lifecycle_handlers(session, self.pairing)

        relay = InboundRelay(
            session,
            self.tokens,
            self.media,
            self._config.relay.webhook_url,
            timeout=self._config.relay.http_timeout,
        )
        relay.attach()
        self.relays[label] = relay
        self.dispatchers[label] = ReplyDispatcher(session, self.media)

        logger.info(f"Registered session: {label} (bridge={session_cfg.bridge_url})")
        return session

    @property
    def default_dispatcher(self) -> ReplyDispatcher | None:
        session = self.sessions.default
        return self.dispatchers.get(session.label) if session else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_sessions(self) -> None:
        """Initialize every session; a failed session is logged and left unusable."""
        for session in self.sessions:
            try:
                await session.initialize()
            except InitError as e:
                logger.error(f"{e}; restart the process to retry")

    def start_sessions_in_background(self) -> asyncio.Task:
        self._start_task = asyncio.create_task(self.start_sessions(), name="session-start")
        return self._start_task

    async def stop(self) -> None:
        """Stop all sessions."""
        logger.info("Shutting down sessions...")
        if self._start_task is not None and not self._start_task.done():
            self._start_task.cancel()
        for session in self.sessions:
            try:
                await session.shutdown()
            except Exception as e:
                logger.error(f"[{session.label}] Error during shutdown: {e}")
        logger.info("Sessions stopped.")

    def run(self) -> None:
        """Synchronous entry point; serves HTTP and starts the sessions."""
        import uvicorn

        from warelay.server import create_app

        server_cfg = self._config.server
        logger.info(f"Server running on http://localhost:{server_cfg.port}")
        uvicorn.run(
            create_app(self),
            host=server_cfg.host,
            port=server_cfg.port,
            log_level=server_cfg.log_level.lower(),
        )


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def main() -> None:
    config = get_config()
    configure_logging(config.server.log_level)
    Application(config).run()


if __name__ == "__main__":
    main()
