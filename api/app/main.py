import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.db.database import init_db
from app.errors import LedgerError
from app.routes import points, recharges, withdrawals, admin, users, ws

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger('clipstream')


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup resources."""
    await init_db()
    yield


app = FastAPI(
    title='ClipStream Ledger API',
    description='Points, transfers, recharges and withdrawals for ClipStream',
    version='0.1.0',
    lifespan=lifespan,
)

# CORS for mobile app
app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error(f'{exc.code} on {request.method} {request.url.path}: {exc.message}')
    else:
        logger.info(f'{exc.code} on {request.method} {request.url.path}: {exc.message}')
    return JSONResponse(
        status_code=exc.status_code,
        content={'error': exc.code, 'detail': exc.message},
    )


# Routes
app.include_router(users.router, prefix='/api/users', tags=['users'])
app.include_router(points.router, prefix='/api/points', tags=['points'])
app.include_router(recharges.router, prefix='/api/recharges', tags=['recharges'])
app.include_router(withdrawals.router, prefix='/api/withdrawals', tags=['withdrawals'])
app.include_router(admin.router, prefix='/api/admin', tags=['admin'])
app.include_router(ws.router, tags=['notifications'])


@app.get('/health')
async def health_check():
    """Health check endpoint."""
    return {'status': 'ok', 'service': 'clipstream-ledger'}
