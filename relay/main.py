import asyncio
import os

from fastapi import FastAPI

from relay.config import settings
from relay.logging_config import get_logger, setup_logging
from relay.routers import files, message, webhook
from relay.runtime import get_runtime
from relay.services.bootstrap_service import FatalStartupError, bootstrap
from relay.services.cache_service import run_cache_sweeper

setup_logging(settings.log_level)

app = FastAPI(
    title="WhatsApp AI Relay",
    description="WhatsApp AI chatbot relay for the Wassenger gateway",
    version="0.1.0",
)

app.include_router(webhook.router)
app.include_router(message.router)
app.include_router(files.router)

logger = get_logger("main")
_sweeper_task: asyncio.Task | None = None


def _is_bootstrap_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    value = os.environ.get("RELAY_BOOTSTRAP_ENABLED")
    return value is None or value.strip().lower() not in {"0", "false", "no", "off"}


@app.on_event("startup")
async def start_relay() -> None:
    global _sweeper_task
    if not _is_bootstrap_enabled():
        return
    runtime = get_runtime()
    try:
        await bootstrap(runtime)
    except FatalStartupError as exc:
        logger.critical(f"Startup failed: {exc}")
        raise SystemExit(1)

    if _sweeper_task is None or _sweeper_task.done():
        _sweeper_task = asyncio.create_task(run_cache_sweeper(runtime.cache))
    logger.info(f"WhatsApp bot is live on port {settings.port}")


@app.on_event("shutdown")
async def stop_relay() -> None:
    global _sweeper_task
    if _sweeper_task is not None:
        _sweeper_task.cancel()
        try:
            await _sweeper_task
        except asyncio.CancelledError:
            pass
        _sweeper_task = None
    if _is_bootstrap_enabled():
        await get_runtime().aclose()


@app.get("/")
async def index():
    return {
        "name": "chatbot",
        "description": "WhatsApp ChatGPT-powered chatbot for Wassenger",
        "endpoints": {
            "webhook": {"path": "/webhook", "method": "POST"},
            "sendMessage": {"path": "/message", "method": "POST"},
            "sample": {"path": "/sample", "method": "GET"},
        },
    }


@app.get("/health")
async def health():
    return {"status": "ok"}
