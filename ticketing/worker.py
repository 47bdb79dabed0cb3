# ticketing/worker.py
# Celery Worker（Prometheus 指标 + Beat 调度 + 测试态同步执行）
from __future__ import annotations

import os

from celery import Celery
from celery.signals import task_postrun, task_prerun

from ticketing.obs.metrics import celery_active_tasks

BROKER_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
RESULT_URL = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

celery = Celery("ticketing", broker=BROKER_URL, backend=RESULT_URL, include=["ticketing.tasks"])

# 基本配置
celery.conf.task_acks_late = True
celery.conf.worker_prefetch_multiplier = 1
celery.conf.broker_transport_options = {"visibility_timeout": 3600}
celery.conf.timezone = "UTC"

# === Beat 调度 ===
celery.conf.beat_schedule = {
    # 到期邮件（活动提醒等）每分钟投递一次
    "dispatch-notifications-every-1m": {
        "task": "ticketing.tasks.dispatch_notifications",
        "schedule": 60.0,
    },
    # 过期订单扫描（与 API 进程内调度器二选一即可，重复运行也安全）
    "sweep-orders-every-1m": {
        "task": "ticketing.tasks.sweep_orders",
        "schedule": float(os.getenv("SWEEP_INTERVAL_SECONDS", "60")),
    },
}

# === 测试/CI：任务在本进程直接执行，避免等待外部 worker ===
_TESTING = bool(os.getenv("PYTEST_CURRENT_TEST")) or os.getenv("CELERY_ALWAYS_EAGER") == "1"
if _TESTING:
    celery.conf.task_always_eager = True
    celery.conf.task_eager_propagates = True
    celery.conf.task_store_eager_result = True


@task_prerun.connect
def _on_task_start(task_id=None, task=None, args=None, kwargs=None, **_):
    celery_active_tasks.inc()


@task_postrun.connect
def _on_task_end(task_id=None, task=None, args=None, kwargs=None, retval=None, state=None, **_):
    celery_active_tasks.dec()
