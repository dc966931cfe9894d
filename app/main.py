import uuid
from contextlib import asynccontextmanager

import logfire
import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from app.core.config import settings
from app.core.context import CORRELATION_ID_HEADER
from app.core.database import create_db_and_tables
from app.core.logging import get_logger
from app.hubspot.views import router as hubspot_router
from app.main_app.views import router as main_app_router
from app.moca.views import router as moca_router

logger = get_logger('hubsync')

# Initialize Logfire
if settings.logfire_token:
    logfire.configure(token=settings.logfire_token)

# Initialize Sentry
if settings.sentry_dsn:
    sentry_sdk.init(dsn=settings.sentry_dsn, traces_sample_rate=1.0)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan (startup and shutdown)"""
    logger.info(f'Starting HubSync application, app_mode={settings.app_mode}')
    if not settings.is_production:
        logger.warning('Webhook signature verification is bypassed outside production')
    create_db_and_tables()
    yield
    logger.info('Shutting down HubSync application')


app = FastAPI(
    title='HubSync',
    description='Syncs HubSpot contacts, companies, deals and line items to a local DB and Moca',
    version='1.0.0',
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.middleware('http')
async def correlation_id_middleware(request: Request, call_next):
    """Every request gets a correlation id, taken from the caller if it sent one"""
    correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    response.headers[CORRELATION_ID_HEADER] = correlation_id
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    correlation_id = getattr(request.state, 'correlation_id', None)
    logger.error(f'[{correlation_id}] Unhandled error on {request.method} {request.url.path}: {exc}', exc_info=exc)
    return JSONResponse(
        {'detail': 'Internal server error', 'correlation_id': correlation_id},
        status_code=500,
        headers={CORRELATION_ID_HEADER: correlation_id} if correlation_id else None,
    )


# Instrument with Logfire
logfire.instrument_fastapi(app)


@app.get('/')
async def root():
    """Health check endpoint"""
    return {'status': 'ok', 'app': 'HubSync', 'version': '1.0.0'}


@app.get('/health')
async def health():
    """Health check endpoint"""
    return {'status': 'healthy'}


app.include_router(main_app_router)
app.include_router(hubspot_router)
app.include_router(moca_router)
