from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from story_engine.config import Settings, build_generator, load_settings
from story_engine.engine.transport import LocalTransport
from story_engine.generators import Generator
from story_engine.routes import router

load_dotenv(Path(__file__).parent.parent / ".env")


def create_app(settings: Settings | None = None, generator: Generator | None = None) -> FastAPI:
    resolved = settings or load_settings()

    app = FastAPI(title="Story Engine")
    app.state.settings = resolved
    app.state.transport = LocalTransport(
        generator or build_generator(resolved), resolved.frame_policy()
    )
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses STORY_* env vars / STORY_CONFIG)
app = create_app()
