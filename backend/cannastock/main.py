from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .config import get_settings
from .errors import (
    AuditFieldMissingError,
    InvalidIdentifierError,
    InvalidSerialTransitionError,
    MovementsAlreadyGeneratedError,
    NotFoundError,
    SequenceExhaustedError,
)
from .log_config import setup_logging
from .routers import audit, health, identifiers, movements, stock, transfers


settings = get_settings()
setup_logging(settings.log_level)

app = FastAPI(title="Cannastock API", version="0.1.0", docs_url="/swagger", redoc_url=None)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidIdentifierError, status.HTTP_400_BAD_REQUEST),
    (AuditFieldMissingError, status.HTTP_400_BAD_REQUEST),
    (SequenceExhaustedError, status.HTTP_409_CONFLICT),
    (MovementsAlreadyGeneratedError, status.HTTP_409_CONFLICT),
    (InvalidSerialTransitionError, status.HTTP_409_CONFLICT),
    (ValueError, status.HTTP_400_BAD_REQUEST),
)


def _make_handler(status_code: int):
    async def _handler(request: Request, exc: Exception):
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return _handler


for exc_class, status_code in _ERROR_STATUS:
    app.add_exception_handler(exc_class, _make_handler(status_code))

app.include_router(health.router, tags=["health"])
app.include_router(stock.router, prefix="/stock", tags=["stock"])
app.include_router(movements.router, prefix="/movements", tags=["movements"])
app.include_router(identifiers.router, prefix="/identifiers", tags=["identifiers"])
app.include_router(transfers.router, prefix="/transfers", tags=["transfers"])
app.include_router(audit.router, prefix="/audit", tags=["audit"])


@app.get("/")
async def root():
    return {"status": "ok"}
