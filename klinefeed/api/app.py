"""FastAPI app exposing the backtest endpoint."""
from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import get_settings
from ..services import BacktestService, MissingFieldsError, NoCandlesError
from ..utils.logging import configure_logging, get_logger
from .dto import ErrorResponse, HealthResponse

LOGGER = get_logger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(service: BacktestService | None = None) -> FastAPI:
    settings = get_settings()
    if service is None:
        configure_logging(settings.log_level)
        service = BacktestService.from_settings(settings)

    app = FastAPI(title="Kline Backtest API")
    app.state.backtest_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", endpoints=list(settings.fetch.endpoints))

    @app.post(
        "/backtest",
        responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def run_backtest(request: Request) -> JSONResponse:
        backtest_service: BacktestService = request.app.state.backtest_service
        try:
            payload: Any = await request.json()
        except ValueError:
            return _error(400, "Request body must be valid JSON")
        try:
            result = await backtest_service.run(payload)
        except MissingFieldsError as exc:
            return _error(400, str(exc))
        except NoCandlesError as exc:
            return _error(404, str(exc))
        except Exception as exc:
            LOGGER.exception("Backtest error")
            return _error(500, str(exc) or "Unknown error")
        return JSONResponse(result)

    return app


app = create_app()
