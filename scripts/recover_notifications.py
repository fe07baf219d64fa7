"""Re-create queue jobs for PENDING notifications that lost theirs.

Same routine the service runs at startup; useful after a Redis flush or
failover without restarting the service.
"""

import argparse
import asyncio
import json

from arq import create_pool
from arq.connections import RedisSettings

from encore.common.db import SessionLocal
from encore.common.logging import configure_logging
from encore.services.notification.queue import NotificationQueue
from encore.services.notification.recovery import NotificationRecovery


async def recover(redis_url: str, queue_name: str, stale_only: bool) -> dict:
    """Open an arq pool, run recovery, close the pool."""

    redis = await create_pool(RedisSettings.from_dsn(redis_url), default_queue_name=queue_name)
    try:
        recovery = NotificationRecovery(SessionLocal, NotificationQueue(redis, queue_name))
        if stale_only:
            return {"stale": await recovery.cleanup_stale_jobs()}
        return await recovery.run_full_recovery()
    finally:
        await redis.aclose()


def main() -> None:
    """CLI entrypoint for manual job recovery."""

    parser = argparse.ArgumentParser(description="Recover lost scheduled-notification jobs.")
    parser.add_argument("--redis-url", default="redis://localhost:6379/0")
    parser.add_argument("--queue-name", default="scheduled-notifications")
    parser.add_argument("--stale-only", action="store_true", help="Only handle notifications past their send time")
    args = parser.parse_args()

    configure_logging()
    result = asyncio.run(recover(args.redis_url, args.queue_name, args.stale_only))
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
