"""
Excel Ledger Manager with Concurrency Control

Appends settled orders to an Excel ledger for the accounting team. Several
Celery workers may export at once, so every read-modify-write of the
workbook happens under a file lock.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from restaurant_ops.core.config import Settings, get_settings
from restaurant_ops.models import Order

logger = logging.getLogger(__name__)


class ExcelManager:
    """Process- and thread-safe writer for the settled orders ledger."""

    LEDGER_COLUMNS = [
        "order_id",
        "restaurant_id",
        "table_number",
        "items",
        "order_total",
        "total_paid",
        "surplus",
        "payment_count",
        "payment_methods",
        "order_status",
        "created_at",
        "settled_at",
        "exported_at",
    ]

    def __init__(
        self,
        data_directory: str,
        filename: str,
        lock_timeout: int = 30,
    ):
        self.data_dir = Path(data_directory)
        self.ledger_file = self.data_dir / filename
        self.lock_file = self.data_dir / f"{filename}.lock"
        self.lock_timeout = lock_timeout

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ExcelManager":
        settings = settings or get_settings()
        return cls(
            data_directory=settings.data_directory,
            filename=settings.ledger_filename,
            lock_timeout=settings.ledger_lock_timeout,
        )

    @staticmethod
    def order_row(order: Order) -> dict[str, Any]:
        """Flatten a settled order into the payload sent to the export task."""
        return {
            "order_id": order.id,
            "restaurant_id": order.table.restaurant_id if order.table else None,
            "table_number": order.table.number if order.table else None,
            "items": "; ".join(f"{item.quantity}x {item.dish_name}" for item in order.items),
            "order_total": float(order.total),
            "total_paid": float(order.amount_paid),
            "surplus": float(order.surplus),
            "payment_count": len(order.payments),
            "payment_methods": ",".join(sorted({p.method.value for p in order.payments})),
            "order_status": order.status.value,
            "created_at": order.created_at.isoformat() if order.created_at else None,
            "settled_at": order.closed_at.isoformat() if order.closed_at else None,
        }

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_or_create_df(self) -> pd.DataFrame:
        """Load existing ledger or create an empty one."""
        if self.ledger_file.exists():
            return pd.read_excel(self.ledger_file, engine="openpyxl")
        return pd.DataFrame(columns=self.LEDGER_COLUMNS)

    def export_settled_order(self, order_data: dict[str, Any]) -> dict[str, Any]:
        """
        Append one settled order to the ledger.

        Re-exporting an order already present is a no-op so task retries
        never duplicate rows.
        """
        self._ensure_data_dir()

        order_id = order_data.get("order_id")
        result = {
            "success": False,
            "message": "",
            "order_id": order_id,
            "exported_at": None,
        }

        try:
            with FileLock(str(self.lock_file), timeout=self.lock_timeout):
                logger.debug(f"Lock acquired for Order #{order_id}")

                df = self._load_or_create_df()
                if not df.empty and order_id in set(df["order_id"].tolist()):
                    result["success"] = True
                    result["message"] = f"Order #{order_id} already in ledger"
                    return result

                export_time = datetime.now().isoformat()
                new_row = {column: order_data.get(column) for column in self.LEDGER_COLUMNS}
                new_row["exported_at"] = export_time

                new_df = pd.DataFrame([new_row], columns=self.LEDGER_COLUMNS)
                df = new_df if df.empty else pd.concat([df, new_df], ignore_index=True)
                df.to_excel(self.ledger_file, index=False, engine="openpyxl")

                result["success"] = True
                result["message"] = f"Order #{order_id} exported"
                result["exported_at"] = export_time
                logger.info(f"Order #{order_id} written to ledger ({len(df)} rows)")

        except Timeout:
            result["message"] = f"Could not lock {self.ledger_file} within {self.lock_timeout}s"
            logger.error(result["message"])

        return result

    def read_ledger(self) -> pd.DataFrame:
        with FileLock(str(self.lock_file), timeout=self.lock_timeout):
            return self._load_or_create_df()
