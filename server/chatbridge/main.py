"""FastAPI application entrypoint for the chat bridge."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .config import Settings, get_settings
from .routers import conversations, realtime
from .services.direct_line import DirectLineClient
from .services.knowledge_search import KnowledgeSearchService
from .services.realtime_voice import Connector, RealtimeVoiceSession
from .services.storage import ConversationStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[ConversationStore] = None,
    direct_line: Optional[DirectLineClient] = None,
    knowledge: Optional[KnowledgeSearchService] = None,
    upstream_connector: Optional[Connector] = None,
) -> FastAPI:
    """Instantiate and configure the FastAPI application.

    Collaborators default to real implementations built from ``settings``; tests
    pass fakes in their place.
    """

    settings = settings or get_settings()
    knowledge = knowledge or KnowledgeSearchService(settings)
    direct_line = direct_line or DirectLineClient(
        settings.direct_line_token, base_url=settings.direct_line_base_url
    )

    def realtime_session_factory(session_id: str) -> RealtimeVoiceSession:
        return RealtimeVoiceSession(
            settings,
            knowledge=knowledge,
            connector=upstream_connector,
            session_id=session_id,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await knowledge.aclose()
        await direct_line.aclose()

    application = FastAPI(
        title="Copilot Voice Chat Bridge",
        description="Direct Line chat bridge and Azure OpenAI realtime voice relay.",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.store = store or ConversationStore()
    application.state.direct_line = direct_line
    application.state.realtime_session_factory = realtime_session_factory

    application.include_router(conversations.router)
    application.include_router(realtime.router)

    @application.get("/")
    async def root() -> dict[str, str]:
        """Lightweight health endpoint for service discovery."""
        return {"service": "chatbridge", "status": "ok"}

    return application


logging.basicConfig(level=get_settings().log_level)

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=get_settings().host,
        port=get_settings().port,
        # Audio deltas arrive as large base64 frames.
        ws_max_size=16 * 1024 * 1024,
    )
