#!/usr/bin/env python3
"""
Inspect or reset retailer circuit breakers, health metrics and failure counters.

Usage:
    python scripts/circuit_breaker.py status [SLUG ...]
    python scripts/circuit_breaker.py reset SLUG
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shelfwatch.crawler.registry import RetailerRegistry
from shelfwatch.db.repositories import SqlRetailerRepository
from shelfwatch.db.session import AsyncSessionLocal
from shelfwatch.events.store import SqlEventStore
from shelfwatch.notify.sinks import LoggingSink
from shelfwatch.reliability.kv_store import RedisKeyValueStore
from shelfwatch.reliability.reactors.circuit_breaker import CircuitBreakerReactor
from shelfwatch.reliability.reactors.crawl_failures import CrawlFailureAlertReactor, failures_key
from shelfwatch.reliability.reactors.retailer_health import RetailerHealthReactor


async def status(slugs: list[str]) -> None:
    store = RedisKeyValueStore()
    events = SqlEventStore(AsyncSessionLocal)
    retailers = SqlRetailerRepository(AsyncSessionLocal)
    breaker = CircuitBreakerReactor(store, events, retailers)
    health = RetailerHealthReactor(store, events, retailers)

    try:
        print("Retailer Circuit Status")
        print("=======================")
        for slug in slugs or RetailerRegistry.get_supported_retailers():
            record = await retailers.get(slug)
            is_open = await breaker.is_open(slug)
            expiry = await breaker.get_cooldown_expiry(slug)
            metrics = await health.get_health_metrics(slug) or {}
            failures = await store.get(failures_key(slug), 0)

            print(f"{slug}:")
            print(f"  status: {record.status.value if record else 'not seeded'}")
            if record:
                print(f"  consecutive_failures: {record.consecutive_failures}")
                print(f"  paused_until: {record.paused_until}")
            print(f"  circuit: {'OPEN' if is_open else 'closed'}")
            if expiry:
                print(f"  cooldown_expires: {expiry.isoformat()}")
            print(f"  recent_failures: {failures}")
            if metrics:
                print(
                    f"  success_rate: {metrics.get('success_rate')}% "
                    f"({metrics.get('successful_crawls')}/{metrics.get('total_crawls')})"
                )
                print(f"  avg_duration_seconds: {metrics.get('avg_duration_seconds')}")
    finally:
        await store.close()


async def reset(slug: str) -> None:
    store = RedisKeyValueStore()
    events = SqlEventStore(AsyncSessionLocal)
    retailers = SqlRetailerRepository(AsyncSessionLocal)

    try:
        await CircuitBreakerReactor(store, events, retailers).reset(slug)
        await RetailerHealthReactor(store, events, retailers).reset_health(slug)
        await CrawlFailureAlertReactor(store, events, LoggingSink()).reset_failure_count(slug)
        record = await retailers.get(slug)
        print(f"Reset {slug}; status is now {record.status.value if record else 'not seeded'}")
    finally:
        await store.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Inspect or reset retailer circuit breakers")
    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="Show circuit and health state")
    status_parser.add_argument("slugs", nargs="*", help="Retailer slugs (default: all)")

    reset_parser = subparsers.add_parser("reset", help="Close the circuit and clear counters")
    reset_parser.add_argument("slug", help="Retailer slug")

    args = parser.parse_args()
    if args.command == "status":
        asyncio.run(status(args.slugs))
    else:
        asyncio.run(reset(args.slug))
