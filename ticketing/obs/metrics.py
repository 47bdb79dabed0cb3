# ticketing/obs/metrics.py
import time

from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "path", "code"])
http_request_duration = Histogram(
    "http_request_duration_seconds", "HTTP request duration seconds", ["method", "path"]
)
celery_active_tasks = Gauge("celery_active_tasks", "Celery active tasks")

# 生命周期
orders_created_total = Counter("ticketing_orders_created_total", "Orders created (payment intent ok)")
order_create_failures_total = Counter(
    "ticketing_order_create_failures_total", "Order creation failures", ["code"]
)
order_transitions_total = Counter(
    "ticketing_order_transitions_total", "Applied order status transitions", ["from_status", "to_status"]
)
orders_expired_total = Counter("ticketing_orders_expired_total", "Orders expired by the sweeper")

# 回调 / 出票 / 副作用
webhook_outcomes_total = Counter("ticketing_webhook_outcomes_total", "Webhook outcomes", ["status"])
tickets_issued_total = Counter("ticketing_tickets_issued_total", "Tickets issued")
side_effect_failures_total = Counter(
    "ticketing_side_effect_failures_total", "Best-effort side effect failures", ["effect"]
)
notifications_dispatched_total = Counter(
    "ticketing_notifications_dispatched_total", "Due email notifications processed", ["status"]
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        # 用路由模板做 label，避免 /orders/{id} 把基数撑爆
        route = request.scope.get("route")
        path = getattr(route, "path", None) or request.url.path
        http_requests_total.labels(request.method, path, str(response.status_code)).inc()
        http_request_duration.labels(request.method, path).observe(elapsed)
        return response
