"""Indexer health report: database state, ledger position, data freshness.

Checks:
- Database connectivity and table sizes
- Latest indexed trade and how far behind the chain it is
- Ledger head (node reachability)
- Single-instance lease holder (when Redis leasing is enabled)

Usage:
    python scripts/indexer_status.py [--json]
"""

import argparse
import asyncio
import json
import sys
from datetime import UTC, datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import func, select, text  # noqa: E402

from config.settings import settings  # noqa: E402
from src.db.database import async_session_factory  # noqa: E402
from src.indexer import persistence  # noqa: E402
from src.models.asset import Asset, PoolStats  # noqa: E402
from src.parsers.aptos.client import AptosClient  # noqa: E402
from src.parsers.aptos.exceptions import AptosError  # noqa: E402

STATUS_OK = "OK"
STATUS_WARN = "WARN"
STATUS_ERROR = "ERROR"


async def check_health() -> dict:
    """Run all checks and return a structured report."""
    now = datetime.now(UTC).replace(tzinfo=None)
    report: dict = {"timestamp": now.isoformat(), "checks": {}}

    # 1. Database
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
            assets = (await session.execute(select(func.count()).select_from(Asset))).scalar_one()
            graduated = (
                await session.execute(
                    select(func.count()).select_from(PoolStats).where(PoolStats.is_graduated.is_(True))
                )
            ).scalar_one()
            trades = await persistence.count_trades(session)
            recent = await persistence.count_recent_trades(session, seconds=60)
            latest = await persistence.get_latest_trade(session)
        db_check: dict = {
            "status": STATUS_OK,
            "assets": assets,
            "graduated_pools": graduated,
            "trades": trades,
            "has_recent_activity": recent > 0,
        }
        if latest is not None:
            db_check["latest_trade"] = latest.transaction_hash
            db_check["latest_trade_age_sec"] = int((now - latest.created_at).total_seconds())
        report["checks"]["database"] = db_check
    except Exception as e:
        report["checks"]["database"] = {"status": STATUS_ERROR, "error": str(e)}

    # 2. Ledger
    client = AptosClient(settings.aptos_node_url, api_key=settings.aptos_api_key)
    try:
        info = await client.get_ledger_info()
        report["checks"]["ledger"] = {
            "status": STATUS_OK,
            "chain_id": info.chain_id,
            "ledger_version": info.ledger_version,
        }
    except AptosError as e:
        report["checks"]["ledger"] = {"status": STATUS_ERROR, "error": str(e)}
    finally:
        await client.close()

    # 3. Lease
    if settings.indexer_lease_enabled:
        try:
            from src.db.redis import LEASE_KEY, close_redis, get_redis

            redis = await get_redis()
            holder = await redis.get(LEASE_KEY)
            ttl_ms = await redis.pttl(LEASE_KEY)
            report["checks"]["lease"] = {
                "status": STATUS_OK if holder else STATUS_WARN,
                "holder": holder,
                "ttl_ms": ttl_ms,
            }
            await close_redis()
        except Exception as e:
            report["checks"]["lease"] = {"status": STATUS_WARN, "error": str(e)}

    report["config"] = {
        "program": settings.bullpump_contract_address,
        "node": settings.aptos_node_url,
        "poll_interval_sec": settings.indexer_poll_interval_sec,
        "graduation_threshold_octas": settings.graduation_threshold_octas,
    }
    return report


def _print_report(report: dict) -> None:
    print(f"Indexer health @ {report['timestamp']}")
    for name, check in report["checks"].items():
        status = check.get("status", "?")
        details = ", ".join(f"{k}={v}" for k, v in check.items() if k != "status")
        print(f"  [{status:<5}] {name}: {details}")


async def main() -> None:
    parser = argparse.ArgumentParser(description="Report launchpad indexer health")
    parser.add_argument("--json", action="store_true", help="Print raw JSON report")
    args = parser.parse_args()

    report = await check_health()
    if args.json:
        print(json.dumps(report, indent=2, default=str))
    else:
        _print_report(report)

    if any(c.get("status") == STATUS_ERROR for c in report["checks"].values()):
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
