# apps/app.py
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from apps.container import Container, build_container
from apps.deps import ERROR_BAD_REQUEST, ApiError, _err, api_error_handler
from apps.routers.auth import auth_router
from apps.routers.identity import identity_router
from apps.routers.messages import messages_router
from apps.routers.templates import templates_router
from apps.routers.triggers import triggers_router
from apps.routers.whatsapp import whatsapp_router
from shared import time
from shared.config import get_settings
from shared.delivery import wait_or_stop

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


async def session_bootstrap(container: Container, stop_event: asyncio.Event):
    """Bring the WhatsApp session up without blocking startup; retry until it opens once."""
    while not stop_event.is_set():
        try:
            await container.session.initialize()
            return
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("WhatsApp session initialization failed")
        await wait_or_stop(stop_event, 30)


def create_app(container: Optional[Container] = None, start_session: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        c = app.state.container
        if c is None:
            c = app.state.container = build_container(get_settings())

        stop_event = asyncio.Event()
        c.outbox.start()
        c.outbox.recover()

        tasks = []
        if start_session:
            tasks.append(asyncio.create_task(session_bootstrap(c, stop_event), name="session_bootstrap"))

        try:
            yield
        finally:
            stop_event.set()
            for t in tasks:
                if not t.done():
                    t.cancel()
                with suppress(asyncio.CancelledError):
                    await t
            await c.outbox.stop()
            await c.session.close()

    app = FastAPI(title="FinTrack WhatsApp Service", lifespan=lifespan)
    app.state.container = container

    app.add_exception_handler(ApiError, api_error_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())[1:])
        msg = f"{field}: {first.get('msg')}" if field else "Invalid request"
        return _err(400, ERROR_BAD_REQUEST, msg)

    @app.get("/health")
    async def health(request: Request):
        c = request.app.state.container
        status = c.session.get_status()
        return {
            "status": "ok",
            "timestamp": time.utcnow().isoformat(),
            "whatsapp": {"connected": status.connected, "state": status.state.value},
            "queue": c.outbox.stats(),
        }

    app.include_router(messages_router)
    app.include_router(whatsapp_router)
    app.include_router(templates_router)
    app.include_router(auth_router)
    app.include_router(identity_router)
    app.include_router(triggers_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("apps.app:app", host=settings.host, port=settings.port)
