from typing import Callable, Dict, List, Optional
import asyncio
import structlog

from npc_chat.config import SDKSettings
from npc_chat.domain.orchestration.core.npc_client import NPCClient
from npc_chat.domain.orchestration.protocols import ActiveState, AuthProvider, ChatTransport
from npc_chat.infrastructure.observability.logging import metrics, setup_logging
from npc_chat.infrastructure.security.auth import TokenAuthProvider

logger = structlog.get_logger(__name__)

# Builds a transport for a chat model name (None means the service default)
TransportFactory = Callable[[Optional[str]], ChatTransport]


class NPCChatSDK:
    """Process-wide SDK context.

    Construct it once, ``await initialize()``, then create NPC clients from
    it (or hand it to code that needs to). ``shutdown()`` closes every client
    the context created.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        settings: Optional[SDKSettings] = None,
        auth_provider: Optional[AuthProvider] = None,
        configure_logging: bool = False
    ):
        self.settings = settings or SDKSettings()
        self._transport_factory = transport_factory
        self._auth_provider = auth_provider
        self._initialized = False
        self._ready = asyncio.Event()
        self._init_lock = asyncio.Lock()
        self.clients: Dict[str, NPCClient] = {}

        if configure_logging:
            setup_logging(
                log_level=self.settings.log_level,
                log_format=self.settings.log_format,
                service_name=self.settings.service_name
            )

    # ----------------- lifecycle -----------------
    async def initialize(
        self,
        developer_token: Optional[str] = None,
        player_token: Optional[str] = None
    ) -> bool:
        """Validate settings and authenticate. Safe to call more than once."""

        async with self._init_lock:
            if self._initialized:
                return True

            logger.info("Initializing SDK", game_id=self.settings.game_id)

            error = self.settings.validate_settings()
            if error:
                logger.error("Configuration error", error=error)
                return False

            if self._auth_provider is None:
                self._auth_provider = self._build_auth_provider(developer_token, player_token)

            try:
                authenticated = await self._auth_provider.authenticate()
            except Exception as e:
                logger.error("Authentication raised", error=str(e), exc_info=True)
                authenticated = False

            if not authenticated:
                logger.error("SDK authentication failed, cannot proceed")
                return False

            self._initialized = True
            self._ready.set()

            logger.info("SDK initialized")
            return True

    async def shutdown(self):
        """Close all clients and drop readiness"""

        for client in list(self.clients.values()):
            client.close()
        self.clients.clear()
        metrics.set_gauge("npcs.active", 0)

        reset = getattr(self._auth_provider, "reset", None)
        if reset is not None:
            reset()

        self._initialized = False
        self._ready.clear()

        logger.info("SDK shutdown")

    def is_ready(self) -> bool:
        return (
            self._initialized
            and self._auth_provider is not None
            and self._auth_provider.is_authenticated()
        )

    async def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait for initialize() to succeed; False on timeout"""

        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_ready()

    # ----------------- factories -----------------
    def create_transport(self, chat_model: Optional[str] = None) -> Optional[ChatTransport]:
        """Build a transport for a model, falling back to the default chat model"""

        if not self.is_ready():
            logger.error("SDK not initialized, call initialize() and wait for it first")
            return None
        return self._transport_factory(chat_model or self.settings.default_chat_model)

    def create_npc(
        self,
        name: str = "npc",
        character_design: Optional[str] = None,
        chat_model: Optional[str] = None,
        active_state: Optional[ActiveState] = None
    ) -> Optional[NPCClient]:
        """Create an NPC client that is already wired to a transport"""

        model = chat_model or self.settings.default_chat_model
        transport = self.create_transport(model)
        if transport is None:
            return None

        client = NPCClient(
            name=name,
            character_design=character_design,
            active_state=active_state,
            serialize_turns=self.settings.serialize_turns,
            request_timeout=self.settings.request_timeout
        )
        client.setup(transport, model)
        self._track(client)
        return client

    async def attach_npc(self, client: NPCClient, chat_model: Optional[str] = None) -> bool:
        """Wait for the SDK, then wire an existing client to a transport"""

        await self.wait_until_ready()

        model = chat_model or client.chat_model or self.settings.default_chat_model
        transport = self.create_transport(model)
        if transport is None:
            return False

        client.setup(transport, model)
        self._track(client)
        return True

    def list_npcs(self) -> List[str]:
        return list(self.clients)

    # ----------------- internals -----------------
    def _build_auth_provider(
        self,
        developer_token: Optional[str],
        player_token: Optional[str]
    ) -> AuthProvider:
        settings = self.settings

        if not settings.ignore_developer_token:
            token = developer_token or settings.developer_token
            if token:
                logger.info("Using developer token for development")
                return TokenAuthProvider(settings.game_id, token, is_developer_token=True)

        return TokenAuthProvider(settings.game_id, player_token)

    def _track(self, client: NPCClient):
        previous = self.clients.get(client.name)
        if previous is not None and previous is not client:
            logger.warning("Replacing NPC client with the same name", npc_name=client.name)
            previous.close()
        self.clients[client.name] = client
        metrics.set_gauge("npcs.active", len(self.clients))
