"""Recognition service: the boundary that creates sessions.

Adapters ask the service for a session on a named surface. The service does
the busy check, builds the engine for the requested vendor, wires the
session to the registry so teardown frees the surface, and starts it.
"""

from collections.abc import Callable

from ..core.config import ConfigLoader, get_config, setup_logging
from .engines.base import RecognitionEngine
from .postprocess import PostProcessPipeline
from .registry import SessionRegistry
from .session import RecognitionSession
from .sink import SessionEventSink
from .timeout_policy import TimeoutPolicy
from .typewriter import TypewriterConfig
from .types import EngineBuildError
from .vendors import build_session_engine

logger = setup_logging(__name__, log_filename="recognition.txt")

EngineBuilder = Callable[[str | None], RecognitionEngine]


class RecognitionService:
    """Creates and tracks recognition sessions."""

    def __init__(
        self,
        config: ConfigLoader | None = None,
        registry: SessionRegistry | None = None,
        engine_builder: EngineBuilder | None = None,
        postprocessor: PostProcessPipeline | None = None,
        timeout_policy: TimeoutPolicy | None = None,
    ) -> None:
        self.config = config or get_config()
        self.registry = registry or SessionRegistry()
        self.timeout_policy = timeout_policy or TimeoutPolicy.from_config(self.config.timeouts)
        self.postprocessor = postprocessor or PostProcessPipeline.from_config(self.config)
        self.typewriter_config = TypewriterConfig.from_dict(self.config.typewriter)
        self._engine_builder = engine_builder or self._build_engine

    def _build_engine(self, vendor: str | None) -> RecognitionEngine:
        return build_session_engine(self.config, vendor=vendor, timeout_policy=self.timeout_policy)

    def create_session(self, session_id: int, engine: RecognitionEngine, sink: SessionEventSink) -> RecognitionSession:
        return RecognitionSession(
            session_id,
            engine,
            sink,
            postprocessor=self.postprocessor,
            timeout_policy=self.timeout_policy,
            typewriter_config=self.typewriter_config,
            local_model_wait_max_ms=self.config.local_model_ready_wait_max_ms,
            rush_wait_max_ms=self.config.rush_wait_max_ms,
            rush_poll_ms=self.config.rush_poll_ms,
            on_closed=self._on_session_closed,
        )

    async def open_session(
        self,
        surface: str,
        sink: SessionEventSink,
        *,
        vendor: str | None = None,
        exclusive: bool = True,
        engine: RecognitionEngine | None = None,
    ) -> RecognitionSession:
        """Create and start a session on ``surface``.

        Raises:
            SessionBusyError: the surface already has a blocking session
            EngineBuildError: no engine could be built for ``vendor``

        """
        session_id = self.registry.reserve(surface, exclusive=exclusive)
        try:
            if engine is None:
                engine = self._engine_builder(vendor)
        except EngineBuildError as e:
            self.registry.release(session_id)
            logger.warning(f"Session {session_id}: {e}")
            raise
        except Exception as e:
            self.registry.release(session_id)
            logger.exception(f"Session {session_id}: engine builder failed")
            raise EngineBuildError(vendor or self.config.vendor, str(e)) from e

        session = self.create_session(session_id, engine, sink)
        self.registry.attach(session_id, session)
        await session.start()
        return session

    def get_session(self, session_id: int) -> RecognitionSession | None:
        return self.registry.get(session_id)

    async def cancel_all(self) -> None:
        for session in self.registry.sessions():
            await session.cancel()

    def _on_session_closed(self, session: RecognitionSession) -> None:
        self.registry.release(session.session_id)
