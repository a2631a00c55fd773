"""
Chaos Simulation Script

Drives many orders through their full lifecycle at once and then fires
concurrent split payments at each of them, to check that every order is
settled exactly once and no payment lands on a closed order.
Run from project root (after scripts/seed.py): python scripts/simulate.py

Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:3000"
TOTAL_ORDERS = 20

# Demo users created by scripts/seed.py
SERVER_ID = 2
COOK_ID = 3


def headers(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


async def fetch_floor(client: httpx.AsyncClient, user_id: int) -> tuple[list[dict], list[dict]]:
    """Tables and available dishes visible to ``user_id``."""
    tables = await client.get(f"{API_BASE_URL}/api/tables", params={"limit": 100}, headers=headers(user_id))
    dishes = await client.get(
        f"{API_BASE_URL}/api/dishes",
        params={"limit": 100, "available_only": True},
        headers=headers(user_id),
    )
    tables.raise_for_status()
    dishes.raise_for_status()
    return tables.json()["data"], dishes.json()["data"]


def generate_items(dishes: list[dict]) -> list[dict[str, Any]]:
    """Generate random order items."""
    return [
        {"dish_id": dish["id"], "quantity": random.randint(1, 3)}
        for dish in random.sample(dishes, k=random.randint(1, min(3, len(dishes))))
    ]


async def transition(client: httpx.AsyncClient, order_id: int, status: str, user_id: int) -> None:
    response = await client.post(
        f"{API_BASE_URL}/api/orders/{order_id}/transitions",
        json={"status": status},
        headers=headers(user_id),
        timeout=30.0,
    )
    response.raise_for_status()


async def pay(client: httpx.AsyncClient, order_id: int, amount: Decimal, server_id: int) -> dict[str, Any]:
    response = await client.post(
        f"{API_BASE_URL}/api/orders/{order_id}/payments",
        json={"amount": str(amount), "method": "CASH"},
        headers=headers(server_id),
        timeout=30.0,
    )
    body = response.json()
    return {
        "status_code": response.status_code,
        "settled": body.get("settled", False),
        "error": body.get("error"),
    }


async def run_order(
    client: httpx.AsyncClient,
    order_num: int,
    tables: list[dict],
    dishes: list[dict],
    server_id: int,
    cook_id: int,
) -> dict[str, Any]:
    """Place, cook, serve and pay one order with concurrent split payments."""
    start_time = time.time()
    try:
        response = await client.post(
            f"{API_BASE_URL}/api/orders",
            json={"table_id": random.choice(tables)["id"], "items": generate_items(dishes)},
            headers=headers(server_id),
            timeout=30.0,
        )
        response.raise_for_status()
        order = response.json()
        order_id = order["id"]
        total = Decimal(order["total"])

        await transition(client, order_id, "PREPARING", cook_id)
        await transition(client, order_id, "READY", cook_id)
        await transition(client, order_id, "SERVED", server_id)

        # Two halves plus one extra payment racing them
        half = (total / 2).quantize(Decimal("0.01"))
        payments = await asyncio.gather(
            pay(client, order_id, half, server_id),
            pay(client, order_id, total - half, server_id),
            pay(client, order_id, total, server_id),
        )
        return {
            "order_num": order_num,
            "order_id": order_id,
            "success": True,
            "total": total,
            "settlements": sum(1 for p in payments if p["settled"]),
            "closed_rejections": sum(1 for p in payments if p["error"] == "order_closed"),
            "other_errors": [p["error"] for p in payments if p["status_code"] >= 400 and p["error"] != "order_closed"],
            "time": round(time.time() - start_time, 3),
        }
    except Exception as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    num_orders: int = TOTAL_ORDERS,
    server_id: int = SERVER_ID,
    cook_id: int = COOK_ID,
) -> dict[str, Any]:
    """Run the chaos simulation."""
    print("=" * 70)
    print("🔥 CHAOS SIMULATION - CONCURRENT SETTLEMENT TEST")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        health = await client.get(f"{API_BASE_URL}/health")
        print(f"\n🩺 Health: {health.json().get('status')}")

        tables, dishes = await fetch_floor(client, server_id)
        if not tables or not dishes:
            print("❌ No tables or dishes. Run scripts/seed.py first.")
            return {"total": num_orders, "successful": 0, "failed": num_orders}

        print("\n🚀 Firing orders...\n")
        results = await asyncio.gather(*[
            run_order(client, i + 1, tables, dishes, server_id, cook_id)
            for i in range(num_orders)
        ])

    total_time = round(time.time() - start_time, 2)
    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    double_settled = [r for r in successful if r["settlements"] != 1]
    unexpected = [r for r in successful if r["other_errors"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Completed Orders: {len(successful)}/{num_orders}")
    print(f"❌ Failed Orders: {len(failed)}/{num_orders}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        rejections = sum(r["closed_rejections"] for r in successful)
        revenue = sum(r["total"] for r in successful)
        print(f"\n🔒 Payments rejected on closed orders: {rejections}")
        print(f"💰 Total Billed: {revenue:.2f}")
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print(f"📈 Average Lifecycle: {avg_time}s")

    if double_settled:
        print(f"\n⚠️ {len(double_settled)} orders were not settled exactly once!")
    if unexpected:
        print(f"⚠️ {len(unexpected)} orders saw unexpected payment errors, e.g. {unexpected[0]['other_errors']}")
    if failed:
        print("\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("🔍 VERIFICATION STEPS")
    print("=" * 70)
    print("1. Check Celery terminal - all export tasks should complete")
    print("2. Run: python scripts/verify.py")
    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "double_settled": len(double_settled),
        "total_time": total_time,
        "results": results,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chaos Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--server-id", type=int, default=SERVER_ID, help="User id acting as server")
    parser.add_argument("--cook-id", type=int, default=COOK_ID, help="User id acting as cook")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    summary = asyncio.run(run_simulation(args.orders, args.server_id, args.cook_id))
    sys.exit(0 if summary["failed"] == 0 and not summary.get("double_settled") else 1)
