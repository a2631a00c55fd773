"""
Ledger Verification Script

Verifies data integrity of the settled orders ledger.
Run from project root: python scripts/verify.py

Version: 1.0.0
"""

import os
import sys
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from restaurant_ops.core.config import get_settings
from restaurant_ops.services.excel_manager import ExcelManager

REQUIRED_COLUMNS = ["order_id", "order_total", "total_paid", "order_status"]


def verify_ledger() -> bool:
    """Verify the ledger after a simulation run."""
    settings = get_settings()
    manager = ExcelManager.from_settings(settings)

    print("=" * 60)
    print("🔍 LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {manager.ledger_file}")
    print("=" * 60)

    if not manager.ledger_file.exists():
        print("\n❌ Ledger file not found!")
        print("   Settle some orders first: python scripts/simulate.py")
        return False

    try:
        df = manager.read_ledger()
        print("\n✅ File loaded successfully!")
    except Exception as e:
        print(f"\n❌ Could not read ledger: {e}")
        return False

    ok = True

    print("\n📊 STATISTICS:")
    print(f"   Settled Orders: {len(df)}")
    print(f"   Columns: {len(df.columns)}")

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        print(f"\n⚠️ Missing Columns: {missing}")
        return False
    print("\n✅ All required columns present")

    duplicates = df["order_id"].duplicated().sum()
    if duplicates > 0:
        print(f"\n⚠️ {duplicates} duplicate order IDs found!")
        ok = False
    else:
        print("✅ No duplicate order IDs")

    not_paid = df[df["order_status"] != "PAID"]
    if len(not_paid) > 0:
        print(f"⚠️ {len(not_paid)} rows are not PAID")
        ok = False

    underpaid = df[df["total_paid"] < df["order_total"]]
    if len(underpaid) > 0:
        print(f"⚠️ {len(underpaid)} rows paid less than their total")
        ok = False
    else:
        print("✅ Every order is fully paid")

    print("\n💰 REVENUE:")
    print(f"   Order totals: {df['order_total'].sum():.2f}")
    print(f"   Collected:    {df['total_paid'].sum():.2f}")
    if "surplus" in df.columns:
        print(f"   Surplus:      {df['surplus'].sum():.2f}")

    print("\n📋 RECENT ORDERS:")
    print("-" * 60)
    if len(df) > 0:
        cols = [c for c in ["order_id", "table_number", "order_total", "total_paid", "settled_at"] if c in df.columns]
        print(df[cols].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE" if ok else "❌ VERIFICATION FOUND PROBLEMS")
    print("=" * 60)

    return ok


if __name__ == "__main__":
    sys.exit(0 if verify_ledger() else 1)
