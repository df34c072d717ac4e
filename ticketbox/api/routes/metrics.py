from fastapi import APIRouter, Depends, Response

from ticketbox.dependencies.tickets import require_admin
from ticketbox.metrics import metrics_registry
from ticketbox.metrics.exporters import PrometheusExporter

router = APIRouter(tags=["metrics"])


@router.get("/metrics", dependencies=[Depends(require_admin)], summary="Prometheus metrics")
async def prometheus_metrics() -> Response:
    exporter = PrometheusExporter(metrics_registry)
    return Response(content=exporter.export(), media_type=exporter.content_type)
