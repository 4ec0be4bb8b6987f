import logging
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from risk_analyzer.config import settings
from risk_analyzer.db import Base, engine
from risk_analyzer.errors import (
    InsufficientData,
    InvalidInput,
    InvalidParameter,
    NotFound,
    NumericalFailure,
    RiskError,
    UpstreamUnavailable,
)
from risk_analyzer.routers import risk
from risk_analyzer.schemas import HealthResponse

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

Base.metadata.create_all(bind=engine)

app = FastAPI(title=f"{settings.app_name} API", version=settings.version)

app.include_router(risk.router, prefix="/risk", tags=["risk"])

_STATUS_CODES = {
    InvalidParameter: 400,
    InvalidInput: 422,
    InsufficientData: 422,
    NotFound: 404,
    UpstreamUnavailable: 502,
    NumericalFailure: 500,
}


@app.exception_handler(RiskError)
async def risk_error_handler(request: Request, exc: RiskError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 500
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok", timestamp=datetime.utcnow(), version=settings.version)
