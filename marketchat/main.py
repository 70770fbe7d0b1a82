from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketchat.core.config import settings
from marketchat.core.logging import configure_logging
from marketchat.core.errors import register_exception_handlers
from marketchat.api.routes import auth, chat, webhook
from marketchat.services.view_registry import get_view_registry


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    # Cerrar todas las suscripciones vivas
    get_view_registry().shutdown()


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=["*"],
        max_age=3600,
    )

    register_exception_handlers(app)

    app.include_router(auth.router, prefix="/auth", tags=["auth"])
    app.include_router(chat.router, prefix="/chat", tags=["chat"])
    app.include_router(webhook.router, prefix="/webhooks", tags=["webhooks"])

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("marketchat.main:app", host="0.0.0.0", port=int(settings.PORT), reload=settings.ENV == "development")
