import logging
import uvicorn
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from config import Settings, settings as default_settings
from dataBase import create_store
from errors import TradeError
from routes import auth_routes, book_routes, trade_routes, user_routes
from stores import Store

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    store = store or create_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.ensure_indexes()
        try:
            yield
        finally:
            await store.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.store = store

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TradeError)
    async def trade_error_handler(request: Request, exc: TradeError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/")
    def root():
        return RedirectResponse(url="/docs")

    app.include_router(auth_routes)
    app.include_router(user_routes)
    app.include_router(book_routes)
    app.include_router(trade_routes)
    return app


app = create_app()


if __name__ == "__main__":
    # Same as: uvicorn main:app --host $API_HOST --port $API_PORT
    uvicorn.run("main:app", host=default_settings.api_host, port=default_settings.api_port)
