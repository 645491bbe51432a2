from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flashgen.config import settings
from flashgen.db import init_all_databases
from flashgen.errors import FlashgenError


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_all_databases(settings.data_dir)
    yield


async def handle_flashgen_error(request: Request, exc: FlashgenError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content={"success": False, "error": {"code": exc.code, "message": exc.message}},
    )


def create_app() -> FastAPI:
    application = FastAPI(
        title="Flashgen Backend", version="0.1.0", lifespan=lifespan
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(FlashgenError, handle_flashgen_error)  # type: ignore[arg-type]

    from flashgen.routers import flashcards, generations, health

    application.include_router(health.router)
    application.include_router(
        generations.router, prefix="/generations", tags=["generations"]
    )
    application.include_router(
        flashcards.router, prefix="/flashcards", tags=["flashcards"]
    )

    return application


app = create_app()
