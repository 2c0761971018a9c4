from fastapi import APIRouter, HTTPException, Query, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()
metrics_router = APIRouter()


def _pipeline(request: Request):
    pipeline = getattr(request.app.state, 'pipeline', None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail='PIPELINE_NOT_READY')
    return pipeline


@router.get('/symbols')
def get_tracked_symbols(request: Request):
    scheduler = _pipeline(request).scheduler
    return {
        'symbols': list(scheduler.symbols),
        'update_interval_sec': scheduler.update_interval_sec,
        'total_symbols': len(scheduler.symbols),
    }


@router.post('/fetch')
def trigger_fetch(request: Request):
    processed = _pipeline(request).scheduler.trigger_manual_fetch()
    return {
        'message': 'Stock data fetch triggered' if processed else 'Fetch cycle already running',
        'symbols_processed': processed,
    }


@router.get('/stats/scheduler')
def scheduler_stats(request: Request):
    return _pipeline(request).scheduler.statistics()


@router.get('/stats/producer')
def producer_stats(request: Request):
    return _pipeline(request).producer.statistics()


@router.get('/stats/api')
def api_stats(request: Request):
    return _pipeline(request).quote_client.statistics()


@router.get('/stats/consumer')
def consumer_stats(request: Request):
    return _pipeline(request).consumer.statistics()


@router.get('/health')
def health(request: Request):
    pipeline = _pipeline(request)
    api_healthy = pipeline.quote_client.health_check()
    return {
        'healthy': api_healthy,
        'finnhub_api_healthy': api_healthy,
        'scheduler_running': pipeline.scheduler.statistics()['is_running'],
    }


@router.get('/status')
def pipeline_status(request: Request):
    return _pipeline(request).status()


@router.get('/metrics')
def metrics_summary(request: Request):
    service = _pipeline(request).metrics_service
    summary = service.get_snapshot()
    summary['recent_alerts'] = service.recent_alerts()
    return summary


@router.get('/metrics/{symbol}')
def symbol_metrics(symbol: str, request: Request):
    return _pipeline(request).metrics_service.get_symbol_snapshot(symbol.strip().upper()).model_dump(mode='json')


@router.get('/{symbol}/history')
def symbol_history(symbol: str, request: Request, limit: int = Query(default=50, ge=1, le=1000)):
    rows = _pipeline(request).store.find_by_symbol(symbol.strip().upper())
    return [row.model_dump(mode='json') for row in rows[:limit]]


@metrics_router.get('/metrics', include_in_schema=False)
def prometheus_metrics(request: Request):
    registry = _pipeline(request).metrics_service.registry
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
