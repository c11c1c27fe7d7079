import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import ALLOWED_ORIGINS
from .database import create_clients
from .domain.functions.router import router as functions_router
from .domain.identity.router import router as auth_router
from .domain.therapists.router import public_router as therapists_public_router
from .domain.therapists.router import router as therapist_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    app.state.baas, app.state.realtime = create_clients()
    try:
        yield
    finally:
        logger.info("Application shutting down...")
        await app.state.baas.close()


app = FastAPI(title="Golden Tower Spa API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert 422 validation errors from HTTPBearer to 401 authentication errors
    when the issue is with the Authorization header
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={
                    "detail": "Not authenticated. Please provide a valid Bearer token in the Authorization header."
                },
            )

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{k: v for k, v in error.items() if k in ("type", "loc", "msg")} for error in exc.errors()]


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

# Routes
app.include_router(auth_router)
app.include_router(therapist_router)
app.include_router(therapists_public_router)
app.include_router(functions_router)


@app.get("/")
def root():
    return {"message": "Golden Tower Spa API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
