import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

from . import cart, catalog, config, inventory, orders, users, vendor_codes
from .database import get_db, init_indexes
from .errors import StoreError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.configure_logging()
    init_indexes(app.dependency_overrides.get(get_db, get_db)())
    logger.info("InstaCampus API started (%s)", config.APP_ENV)
    yield


app = FastAPI(title="InstaCampus API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"][1:])
        problems.append(f"{field}: {error['msg']}" if field else error["msg"])
    return JSONResponse(status_code=400, content={"message": "; ".join(problems)})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


app.include_router(users.auth_router)
app.include_router(users.user_router)
app.include_router(catalog.router)
app.include_router(inventory.router)
app.include_router(cart.router)
app.include_router(orders.order_router)
app.include_router(orders.vendor_router)
app.include_router(vendor_codes.router)


@app.get("/")
def read_root():
    return {"name": "InstaCampus API", "status": "ok"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    info = {"backend": "running", "database": "disconnected"}
    try:
        db.list_collection_names()
        info["database"] = "connected"
    except Exception as e:
        info["error"] = str(e)
    return info


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
