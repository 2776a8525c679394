"""
HTTP Channel - FastAPI Application

Exposes the conversation engine over HTTP. Each request carries one inbound
message for an identity; the response contains every reply the engine
produced for it plus the identity's phase afterwards.
"""

import logging
import os
import shutil
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field

from . import SERVICE_NAME, __version__
from .channel import CollectingChannel
from .config import Settings, configure_logging
from .router import Router, create_router

logger = logging.getLogger("http_channel")

MAX_AUDIO_BYTES = 25 * 1024 * 1024


# -----------------------------------------------------------------------------
# Request/Response Models
# -----------------------------------------------------------------------------
class MessageRequest(BaseModel):
    identity: str = Field(..., min_length=1, description="Stable conversation key")
    text: str = Field(..., description="Inbound message text")


class MessageResponse(BaseModel):
    identity: str
    replies: List[str]
    phase: str


# -----------------------------------------------------------------------------
# Application Factory
# -----------------------------------------------------------------------------
def create_app(settings: Optional[Settings] = None, router: Optional[Router] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings)
    router = router or create_router(settings)

    app = FastAPI(
        title=f"{SERVICE_NAME} - HTTP Channel",
        description="Chat-driven clone, edit, commit and deploy",
        version=__version__,
    )
    app.state.router = router
    app.state.settings = settings

    async def respond(identity: str, channel: CollectingChannel) -> MessageResponse:
        return MessageResponse(
            identity=identity,
            replies=channel.replies(identity),
            phase=router.sessions.state(identity).phase.value,
        )

    @app.get("/")
    async def root():
        return {
            "service": SERVICE_NAME,
            "status": "running",
            "version": __version__,
        }

    @app.get("/health")
    async def health_check():
        data_dir = settings.data_dir
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "version": __version__,
            "components": {
                "git": shutil.which(settings.git_command) is not None,
                "code_agent": shutil.which(settings.agent_command) is not None,
                "deploy_cli": shutil.which(settings.deploy_command) is not None,
                "ai_configured": router.ai.configured,
                "ai_enabled": router.ai.enabled,
                "data_dir_writable": _is_writable(data_dir),
            },
        }

    @app.post("/messages", response_model=MessageResponse)
    async def post_message(request: MessageRequest):
        identity = request.identity.strip()
        if not identity:
            raise HTTPException(status_code=422, detail="identity must not be blank")
        channel = CollectingChannel()
        await router.handle_text(identity, request.text, channel)
        return await respond(identity, channel)

    @app.post("/audio", response_model=MessageResponse)
    async def post_audio(identity: str = Form(...), file: UploadFile = File(...)):
        identity = identity.strip()
        if not identity:
            raise HTTPException(status_code=422, detail="identity must not be blank")
        audio = await file.read()
        if not audio:
            raise HTTPException(status_code=400, detail="Empty audio upload")
        if len(audio) > MAX_AUDIO_BYTES:
            raise HTTPException(status_code=413, detail="Audio file too large")
        channel = CollectingChannel()
        await router.handle_audio(identity, audio, file.filename or "audio.ogg", channel)
        return await respond(identity, channel)

    @app.on_event("startup")
    async def startup_event():
        logger.info(f"{SERVICE_NAME} HTTP channel v{__version__} starting")
        logger.info(f"Data dir: {settings.data_dir}, repos dir: {settings.repos_dir}")
        if settings.encryption_secret == "please_change_me":
            logger.warning("ENCRYPTION_SECRET is not set, using the insecure default")

    return app


def _is_writable(path) -> bool:
    target = path if path.exists() else path.parent
    return os.access(target, os.W_OK)


app = create_app()


# -----------------------------------------------------------------------------
# Main Entry Point
# -----------------------------------------------------------------------------
def main():
    import uvicorn
    settings = app.state.settings
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
