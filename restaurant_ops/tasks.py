"""
Celery Tasks
Background export of settled orders to the Excel ledger.
"""

import logging
import time

from restaurant_ops.celery_worker import celery_app
from restaurant_ops.services.excel_manager import ExcelManager

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True,
)
def export_settled_order(self, order_data: dict) -> dict:
    """
    Append a settled order to the ledger.

    Args:
        order_data: Row produced by ExcelManager.order_row()

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    order_id = order_data.get("order_id", "unknown")

    logger.info(f"Task {task_id}: exporting order #{order_id}")
    start_time = time.time()

    result = ExcelManager.from_settings().export_settled_order(order_data)

    elapsed = round(time.time() - start_time, 3)
    result["task_id"] = task_id
    result["processing_time_seconds"] = elapsed

    if result["success"]:
        logger.info(f"Task {task_id}: order #{order_id} done in {elapsed}s")
    else:
        logger.warning(f"Task {task_id}: order #{order_id} failed - {result['message']}")

    return result

