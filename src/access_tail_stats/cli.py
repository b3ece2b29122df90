from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from access_tail_stats.core.store import DEFAULT_REDIS_URL, StatsReader
from access_tail_stats.core.time_window import validate_date, validate_hour, validate_month


def _arg_type(validator):
    def _check(s: str) -> str:
        try:
            return validator(s)
        except ValueError as e:
            raise argparse.ArgumentTypeError(str(e)) from e

    return _check


def _sorted_counts(counts: dict[str, str]) -> list[tuple[str, int]]:
    return sorted(((k, int(v)) for k, v in counts.items()), key=lambda kv: (-kv[1], kv[0]))


async def collect_host_stats(
    reader: StatsReader,
    host: str,
    *,
    date: str | None = None,
    hour: str | None = None,
    month: str | None = None,
    limit: int = 10,
) -> dict[str, Any]:
    """Gather the counters of one host (and optionally one bucket)."""
    out: dict[str, Any] = {
        "host": host,
        "status": _sorted_counts(await reader.status_by_host(host)),
        "errors_by_status": _sorted_counts(await reader.errors_by_status(host)),
        "unique_ips": await reader.unique_ips(host),
        "top_paths": await reader.top_paths(host, limit=limit),
    }

    if hour:
        visits, errors = await reader.hourly_visits(hour), await reader.hourly_errors(hour)
        out["bucket"] = ("hour", hour)
        out["bucket_unique_ips"] = await reader.hourly_unique_ips(hour, host)
    elif date:
        visits, errors = await reader.daily_visits(date), await reader.daily_errors(date)
        out["bucket"] = ("date", date)
        out["bucket_unique_ips"] = await reader.daily_unique_ips(date, host)
    elif month:
        visits, errors = await reader.monthly_visits(month), await reader.monthly_errors(month)
        out["bucket"] = ("month", month)
        out["bucket_unique_ips"] = await reader.monthly_unique_ips(month, host)
    else:
        return out

    out["bucket_visits"] = int(visits.get(host, 0))
    out["bucket_errors"] = int(errors.get(host, 0))
    return out


def _print_host(stats: dict[str, Any], total: int) -> None:
    print(f"== {stats['host']}  ({total} requests, {stats['unique_ips']} unique IPs)")
    if "bucket" in stats:
        kind, value = stats["bucket"]
        print(
            f"  {kind} {value}: {stats['bucket_visits']} visits, "
            f"{stats['bucket_errors']} errors, {stats['bucket_unique_ips']} unique IPs"
        )
    if stats["status"]:
        print("  status:  " + ", ".join(f"{s}={n}" for s, n in stats["status"]))
    if stats["errors_by_status"]:
        print("  errors:  " + ", ".join(f"{s}={n}" for s, n in stats["errors_by_status"]))
    for path, score in stats["top_paths"]:
        print(f"  {int(score):>8}  {path}")


async def _run(args: argparse.Namespace) -> None:
    redis = Redis.from_url(args.redis_url, decode_responses=True)
    reader = StatsReader(redis)
    try:
        totals = dict(_sorted_counts(await reader.total_requests()))
        hosts = [args.host] if args.host else list(totals)

        for host in hosts:
            stats = await collect_host_stats(
                reader,
                host,
                date=args.date,
                hour=args.hour,
                month=args.month,
                limit=args.limit,
            )
            _print_host(stats, totals.get(host, 0))

        methods = _sorted_counts(await reader.methods())
        if methods:
            print("\nmethods: " + ", ".join(f"{m}={n}" for m, n in methods))
        print(f"last update: {await reader.last_update() or '-'}")
        print(f"\nFound {len(hosts)} host(s).")
    finally:
        await redis.aclose()


def main() -> None:
    p = argparse.ArgumentParser(description="Show aggregated access-log counters from Redis.")
    p.add_argument("--host", default=None, help="Host to show (default: every tracked host)")
    p.add_argument("--redis-url", default=os.getenv("REDIS_URL", DEFAULT_REDIS_URL))
    p.add_argument("--limit", type=int, default=10, help="Top paths per host (default: 10)")

    bucket = p.add_mutually_exclusive_group()
    bucket.add_argument("--date", type=_arg_type(validate_date), default=None, help="YYYY-MM-DD")
    bucket.add_argument("--hour", type=_arg_type(validate_hour), default=None, help="YYYY-MM-DDTHH")
    bucket.add_argument("--month", type=_arg_type(validate_month), default=None, help="YYYY-MM")

    args = p.parse_args()
    if args.limit <= 0:
        p.error("--limit must be > 0")

    try:
        asyncio.run(_run(args))
    except (RedisError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)


if __name__ == "__main__":
    main()
