"""Application entrypoint (FastAPI + background worker/scheduler)."""

import asyncio
import contextlib
import sys

from .config.settings import get_settings
from .http_server import run_http_server
from .lifespan import lifespan_manager
from .scheduler import run_daily_dedupe, run_job_worker


async def main() -> None:
    """Main application entrypoint."""
    async with lifespan_manager() as state:
        settings = get_settings()
        tasks = []
        if settings.worker_enabled:
            tasks.append(
                asyncio.create_task(
                    run_job_worker(state["job_runner"], state["job_repository"], settings.worker_poll_seconds)
                )
            )
        if settings.dedupe_enabled:
            tasks.append(
                asyncio.create_task(
                    run_daily_dedupe(state["dedupe_service"], settings.dedupe_hour_local, settings.scheduler_timezone)
                )
            )
        try:
            await run_http_server()
        finally:
            for task in tasks:
                task.cancel()
            for task in tasks:
                with contextlib.suppress(asyncio.CancelledError):
                    await task


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutting down...")
        sys.exit(0)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)
