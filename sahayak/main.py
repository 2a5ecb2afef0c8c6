"""
Sahayak v1.0 — Main Application
FastAPI app. Builds the shared services once at startup and mounts the text
and voice routers.

Services on app.state:
    repo, pipeline, semantic_cache, tts_cache, context_store,
    dispatcher, stt, default_persona
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sahayak.cache.backend import create_backend
from sahayak.cache.semantic import SemanticCache
from sahayak.cache.tts_cache import TTSCache
from sahayak.config import CORS_ORIGINS, LOG_LEVEL, DEFAULT_PERSONA, TTS_WARMUP
from sahayak.database import init_db, SessionLocal
from sahayak.storage import TutorRepository
from sahayak.tutor.context import SessionContextStore
from sahayak.tutor.detectors import IntentClassifier
from sahayak.tutor.llm import OpenAIChat, OpenAIEmbedder, get_openai_client
from sahayak.tutor.personas import voice_for
from sahayak.tutor.pipeline import TutorPipeline
from sahayak.tutor.streaming import StreamingGenerator
from sahayak.voice.dispatcher import SpeechDispatcher
from sahayak.voice.stt import get_stt
from sahayak.voice.tts import get_tts

logger = logging.getLogger("sahayak")

VERSION = "1.0.0"


# ─── Services ────────────────────────────────────────────────────────────────

async def build_services() -> dict:
    """Production wiring: SQL repo, Redis (or in-process) caches, OpenAI, Sarvam."""
    init_db()
    backend = await create_backend()
    client = get_openai_client()

    repo = TutorRepository(SessionLocal)
    semantic_cache = SemanticCache(backend, OpenAIEmbedder(client))
    tts_cache = TTSCache(backend)
    context_store = SessionContextStore(backend)
    pipeline = TutorPipeline(
        repo=repo,
        generator=StreamingGenerator(OpenAIChat(client)),
        semantic_cache=semantic_cache,
        context_store=context_store,
        intent_classifier=IntentClassifier(client=client),
    )
    return {
        "backend": backend,
        "repo": repo,
        "pipeline": pipeline,
        "semantic_cache": semantic_cache,
        "tts_cache": tts_cache,
        "context_store": context_store,
        "dispatcher": SpeechDispatcher(get_tts(), tts_cache),
        "stt": get_stt(),
        "default_persona": DEFAULT_PERSONA,
    }


async def _warm_tts(services: dict) -> None:
    tts = services["dispatcher"].tts
    persona = services["default_persona"]

    async def synthesize(text: str, language: str) -> bytes:
        result = await tts.synthesize(text, language, voice_for(persona))
        return result.audio_bytes

    stats = await services["tts_cache"].warmup(synthesize, persona=persona)
    logger.info(f"TTS warmup complete: {stats}")


# ─── App factory ─────────────────────────────────────────────────────────────

def create_app(services: Optional[dict] = None) -> FastAPI:
    """`services` overrides the production wiring (tests pass fakes)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=getattr(logging, LOG_LEVEL),
            format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        )

        wired = services if services is not None else await build_services()
        for name, service in wired.items():
            setattr(app.state, name, service)

        warmup = None
        if TTS_WARMUP and services is None:
            warmup = asyncio.create_task(_warm_tts(wired))
            logger.info("TTS warmup started in background")

        logger.info(f"Sahayak v{VERSION} ready")
        yield

        if warmup and not warmup.done():
            warmup.cancel()
        backend = wired.get("backend")
        if backend is not None and hasattr(backend, "close"):
            await backend.close()
        tts = wired["dispatcher"].tts
        if hasattr(tts, "close"):
            await tts.close()
        logger.info("Shutting down")

    app = FastAPI(
        title="Sahayak",
        description="Multilingual voice tutor: response generation core",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from sahayak.routers import tutor, voice
    app.include_router(tutor.router)
    app.include_router(voice.router)

    @app.get("/health")
    @app.get("/healthz")
    async def health():
        return {"status": "ok", "version": VERSION}

    @app.get("/ping")
    async def ping():
        return {"status": "awake"}

    return app


app = create_app()
