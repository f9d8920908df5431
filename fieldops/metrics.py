"""
Prometheus metrics for the proposal draft engine.
"""
import os

from prometheus_client import Counter, CollectorRegistry, REGISTRY
from prometheus_client import multiprocess

# Check if running in multi-process mode (Gunicorn)
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

# Use multiprocess registry in production with Gunicorn
if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

quote_saves_total = Counter(
    'fieldops_quote_saves_total',
    'Quote save attempts by outcome',
    ['outcome'],
    registry=registry if not MULTIPROCESS_MODE else None
)

change_order_operations_total = Counter(
    'fieldops_change_order_operations_total',
    'Change-order draft operations by outcome',
    ['operation', 'outcome'],
    registry=registry if not MULTIPROCESS_MODE else None
)

change_order_rollbacks_total = Counter(
    'fieldops_change_order_rollbacks_total',
    'Optimistic change-order updates rolled back after a rejected request',
    ['operation'],
    registry=registry if not MULTIPROCESS_MODE else None
)

change_order_acceptances_total = Counter(
    'fieldops_change_order_acceptances_total',
    'Change-order acceptances by outcome',
    ['outcome'],
    registry=registry if not MULTIPROCESS_MODE else None
)
