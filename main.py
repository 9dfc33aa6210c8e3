import os
import time
import signal
import asyncio
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from quizcore.utils import get_logger, get_settings, set_request_context
from quizcore.store import KeyValueStore, StoreError, create_store
from quizcore.ai_queue import AIRequestQueue, RecoverySweeper, QueueDecodeError
from quizcore.cache import ResponseCache
from quizcore.ratelimit import RateLimiter

LOG = get_logger()

settings = get_settings()

app = FastAPI(title='Quiz Platform AI Queue Service', version='1.0.0', description='Operations API for the AI request queue')
app.state.store = None
app.state.queue = None
app.state.cache = None
app.state.limiter = None
app.state.sweeper = None


def install_components(store: KeyValueStore, clock=None, start_sweeper: bool = False):
    """Wire the queue, cache and limiter around ``store`` and attach them to the app."""
    app.state.store = store
    app.state.queue = AIRequestQueue.from_settings(store, settings, clock=clock)
    app.state.cache = ResponseCache.from_settings(store, settings)
    app.state.limiter = RateLimiter.from_settings(store, settings, clock=clock)
    app.state.sweeper = RecoverySweeper(app.state.queue, interval=settings.AI_RECOVERY_INTERVAL_SECONDS)
    if start_sweeper:
        app.state.sweeper.start()
    return app.state.queue


def _error(status_code: int, message: str, request_id: Optional[str], **fields):
    body = {'success': False, 'error': {'message': message, **fields}, 'request_id': request_id}
    return JSONResponse(status_code=status_code, content=body)


@app.middleware('http')
async def add_request_id_and_logging(request: Request, call_next):
    request_id = request.headers.get('x-request-id') or os.urandom(8).hex()
    request.state.request_id = request_id
    set_request_context(request_id)
    start = time.time()
    LOG.info('http_request_start', extra={'method': request.method, 'path': request.url.path, 'client': request.client.host if request.client else None})
    try:
        response: Response = await call_next(request)
    except Exception:
        LOG.exception('Unhandled exception in request', exc_info=True)
        return _error(500, 'Internal server error', request_id)
    duration = int((time.time() - start) * 1000)
    LOG.info('http_request_end', extra={'method': request.method, 'path': request.url.path, 'status_code': response.status_code, 'duration_ms': duration})
    response.headers['X-Request-ID'] = request_id
    return response


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    LOG.warning('store_error', extra={'path': request.url.path, 'error': str(exc)})
    return _error(503, 'Store unavailable', getattr(request.state, 'request_id', None), detail=str(exc))


@app.exception_handler(QueueDecodeError)
async def decode_error_handler(request: Request, exc: QueueDecodeError):
    LOG.error('queue_decode_error', extra={'path': request.url.path, 'error': str(exc)})
    return _error(500, 'Corrupt queue entry', getattr(request.state, 'request_id', None), detail=str(exc))


def _queue(request: Request) -> Optional[AIRequestQueue]:
    return request.app.state.queue


@app.get('/health')
async def health():
    return {'status': 'ok', 'timestamp': datetime.utcnow().isoformat() + 'Z', 'service': 'ai-queue'}


def _check_store() -> str:
    store = app.state.store
    if store is None:
        return 'error: store not configured'
    try:
        return 'ok' if store.ping() else 'error: ping failed'
    except StoreError as e:
        return f'error: {str(e)}'


@app.get('/ready')
async def ready():
    services = {'store': _check_store()}
    ready_ok = not (settings.REDIS_REQUIRED_FOR_READY and services['store'].startswith('error'))
    status_code = 200 if ready_ok else 503
    return JSONResponse(status_code=status_code, content={'status': 'ready' if ready_ok else 'not ready', 'services': services})


@app.get('/queue/status')
async def queue_status(request: Request):
    queue = _queue(request)
    if queue is None:
        return _error(503, 'Queue not configured', request.state.request_id)
    status = queue.get_queue_status()
    return {'success': True, 'pending': status.pending, 'in_flight': status.in_flight, 'request_id': request.state.request_id}


@app.post('/queue/recover')
async def queue_recover(request: Request):
    queue = _queue(request)
    if queue is None:
        return _error(503, 'Queue not configured', request.state.request_id)
    recovered = queue.recover_stuck_requests()
    return {'success': True, 'recovered': recovered, 'request_id': request.state.request_id}


@app.get('/queue/requests/{ai_request_id}')
async def queue_request_status(ai_request_id: str, request: Request):
    queue = _queue(request)
    if queue is None:
        return _error(503, 'Queue not configured', request.state.request_id)
    record = queue.get_request_status(ai_request_id)
    if not record:
        return _error(404, 'Request not found', request.state.request_id, ai_request_id=ai_request_id)
    return {'success': True, **record, 'request_id': request.state.request_id}


@app.on_event('startup')
async def on_startup():
    LOG.info('AI queue service starting', extra={'env': settings.ENVIRONMENT, 'store_backend': settings.STORE_BACKEND})
    if app.state.queue is not None:
        return
    try:
        install_components(create_store(settings), start_sweeper=settings.AI_RECOVERY_INTERVAL_SECONDS > 0)
        LOG.info('AI queue components ready')
    except StoreError as e:
        LOG.warning('AI queue store unavailable at startup', extra={'error': str(e)})


@app.on_event('shutdown')
async def on_shutdown():
    LOG.info('AI queue service shutting down')
    sweeper = app.state.sweeper
    if sweeper is not None:
        sweeper.stop()
    store = app.state.store
    if store is not None:
        store.close()


def _install_signal_handlers(loop: Optional[asyncio.AbstractEventLoop] = None):
    if loop is None:
        loop = asyncio.get_event_loop()

    def _handler(signum, frame):
        LOG.info('Received shutdown signal', extra={'signal': signum})
        loop.call_soon_threadsafe(loop.stop)

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


if __name__ == '__main__':
    import uvicorn

    _install_signal_handlers()
    uvicorn.run('main:app', host=os.getenv('HOST', '0.0.0.0'), port=int(os.getenv('PORT', '8000')), log_level=os.getenv('LOG_LEVEL', 'info').lower())
