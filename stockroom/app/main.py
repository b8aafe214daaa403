import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stockroom.app.api.v1.router import router as v1_router
from stockroom.app.core.logging import setup_logger
from stockroom.services.errors import StockroomError

setup_logger()
logger = logging.getLogger(__name__)

app = FastAPI(title="Stockroom", version="0.1.0")
app.include_router(v1_router, prefix="/v1")


@app.exception_handler(StockroomError)
async def stockroom_error_handler(request: Request, exc: StockroomError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": "internal_error"},
    )


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=int(os.getenv("PORT", "8000")))
