"""FastAPI endpoints under /api.

POST /api/story streams one round as NDJSON frames (see engine.transport).
GET  /api/health reports which generator is configured.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from story_engine.engine.transport import LocalTransport, TransportError, encode_frame
from story_engine.models import RoundRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Liveness check plus the active generator kind."""
    return {"ok": True, "generator": request.app.state.settings.generator}


@router.post("/story")
async def story(request: Request, body: RoundRequest):
    """Generate a round and stream it as content frames plus one complete frame."""
    transport: LocalTransport = request.app.state.transport
    frames = transport.stream(body)

    # The generator runs before the first frame, so its failure can still be
    # reported as a status code.
    try:
        first = await anext(frames)
    except TransportError as e:
        raise HTTPException(502, str(e))

    async def ndjson():
        yield encode_frame(first)
        async for frame in frames:
            yield encode_frame(frame)

    return StreamingResponse(
        ndjson(),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache"},
    )
