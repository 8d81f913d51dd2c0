import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.errors import RefreshError
from app.schemas.price import PriceResponse

router = APIRouter()

AVAILABLE_ROUTES = ['/health', '/price', '/price/update', '/config', '/metrics/price']


def _now_ms() -> int:
    return int(time.time() * 1000)


def _price_response(status_code: int, **fields) -> JSONResponse:
    body = PriceResponse(timestamp=_now_ms(), **fields)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode='json', by_alias=True, exclude_none=True),
    )


@router.get('/health')
def health(request: Request):
    healthy = request.app.state.binance_client.probe()
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            'status': 'healthy' if healthy else 'unhealthy',
            'timestamp': _now_ms(),
            'binanceApi': 'connected' if healthy else 'disconnected',
        },
    )


@router.get('/price')
def get_price(request: Request):
    snapshot = request.app.state.price_service.current()
    if snapshot is None:
        return _price_response(
            503,
            success=False,
            error='No price data available. Service may be starting up.',
        )
    return _price_response(200, success=True, data=snapshot)


@router.post('/price/update')
def update_price(request: Request):
    refresher = request.app.state.price_refresher
    try:
        snapshot = refresher.trigger()
    except RefreshError as exc:
        return _price_response(500, success=False, error=str(exc) or 'Failed to update price')
    return _price_response(200, success=True, data=snapshot)


@router.get('/config')
def get_config(request: Request):
    settings = request.app.state.settings
    service = request.app.state.price_service
    return {
        'port': settings.PORT,
        'updateIntervalMs': settings.UPDATE_INTERVAL_MS,
        'serviceCommission': service.commission,
        'binanceApiUrl': settings.BINANCE_API_URL,
        'lastUpdateTime': service.last_update_time(),
        'isPriceFresh': service.is_fresh(),
    }


@router.get('/metrics/price')
def price_metrics(request: Request):
    metrics = request.app.state.price_refresher.metrics()
    metrics['last_update_time'] = request.app.state.price_service.last_update_time()
    return metrics
