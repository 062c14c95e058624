"""Helpers writing metrics into the store.

Metric writes are best effort: a failing write is logged and the caller
carries on with the next metric.
"""

import logging
from typing import Sequence

from .models import Metric, MetricKind
from .store import Store

logger = logging.getLogger(__name__)


async def store_get_metric(store: Store, metric: Metric) -> Metric:
    """Return the stored value of ``metric``, or ``metric`` unchanged."""
    try:
        return await store.get_metric(metric)
    except Exception as e:
        logger.error(f"Reading metric {metric.kind.value} from the store failed: {e}")
        return metric


async def store_set_metric(store: Store, metric: Metric) -> None:
    try:
        await store.set_metric(metric)
    except Exception as e:
        logger.error(f"Writing metric {metric.kind.value} in the store failed: {e}")


async def store_del_metric(store: Store, metric: Metric) -> None:
    try:
        await store.del_metric(metric)
    except Exception as e:
        logger.error(f"Deleting metric {metric.kind.value} from the store failed: {e}")


async def emit_status_metric(
    store: Store,
    kind: MetricKind,
    labels: dict[str, str],
    statuses: Sequence[str],
    status: str,
    sparse: bool,
) -> None:
    """Expand ``status`` into one metric per entry of ``statuses``.

    The matching status gets 1, every other one 0. In sparse mode the
    non-matching metrics are removed instead of zeroed.
    """
    for current in statuses:
        metric = Metric(kind=kind, labels={**labels, "status": current})

        if current == status:
            metric.value = 1.0
        elif sparse:
            await store_del_metric(store, metric)
            continue

        await store_set_metric(store, metric)
