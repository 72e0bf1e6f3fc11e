"""
Taskly MCP Server

Operator tools for the Taskly scheduling core: run a tick by hand, inspect
recurring series, classify tasks, and manage the database. Also the
`taskly-mcp` command line, which can run the periodic scheduler.
"""

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from mcp.server.fastmcp import FastMCP

# Initialize FastMCP server
mcp = FastMCP("taskly")

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Services wired together for the tools and the scheduler."""

    config: object
    adapter: object
    tasks: object
    users: object
    notifications: object
    generator: object
    dispatcher: object
    scheduler: object
    channel: object = None


# Global state
_runtime: Optional[Runtime] = None


def build_runtime(adapter, config, channel=None) -> Runtime:
    """Wire services, generator, dispatcher and scheduler around one adapter."""
    from taskly.dispatcher import NotificationDispatcher
    from taskly.generator import InstanceGenerator
    from taskly.scheduler import TaskScheduler
    from taskly.services import NotificationService, TaskService, UserService

    tasks = TaskService(adapter)
    users = UserService(adapter)
    notifications = NotificationService(adapter)
    generator = InstanceGenerator(tasks, users, config)
    dispatcher = NotificationDispatcher(tasks, users, notifications, channel, config)
    scheduler = TaskScheduler(generator, dispatcher, config)

    return Runtime(
        config=config,
        adapter=adapter,
        tasks=tasks,
        users=users,
        notifications=notifications,
        generator=generator,
        dispatcher=dispatcher,
        scheduler=scheduler,
        channel=channel,
    )


async def ensure_initialized() -> Runtime:
    """Ensure database is initialized and services are wired."""
    global _runtime
    if _runtime is not None:
        return _runtime

    from taskly.channels import TelegramChannel
    from taskly.config import get_config
    from taskly.db import init_adapter

    config = get_config()
    adapter = await init_adapter(config)

    channel = None
    if config.telegram.bot_token:
        channel = TelegramChannel.from_config(config)
    else:
        logger.warning("TELEGRAM_BOT_TOKEN not set; notifications will not be sent")

    _runtime = build_runtime(adapter, config, channel)
    logger.info("Taskly initialized")
    return _runtime


async def shutdown() -> None:
    """Stop the scheduler and release connections."""
    global _runtime
    from taskly.db import close_adapter

    if _runtime is not None:
        await _runtime.scheduler.stop()
        if _runtime.channel is not None:
            await _runtime.channel.close()
        _runtime = None
    await close_adapter()


def _parse_now(now: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 instant; naive values are taken as UTC."""
    if not now:
        return None
    from taskly.clock import ensure_utc

    return ensure_utc(datetime.fromisoformat(now.replace("Z", "+00:00")))


# =============================================================================
# SCHEDULER TOOLS
# =============================================================================

@mcp.tool()
async def taskly_tick(now: Optional[str] = None) -> dict:
    """
    Run one scheduler tick: generate today's recurring instances, then send
    due reminders, daily summaries and evening reminders.

    Args:
        now: Optional ISO-8601 instant to run as (defaults to the current time)

    Returns:
        Generation and dispatch counts
    """
    runtime = await ensure_initialized()
    try:
        instant = _parse_now(now)
    except ValueError as e:
        return {"error": f"Invalid now: {e}"}

    result = await runtime.scheduler.run_tick(instant)
    return result.to_dict()


@mcp.tool()
async def taskly_generate(lookahead_days: Optional[int] = None, now: Optional[str] = None) -> dict:
    """
    Generate recurring task instances without sending anything.

    Args:
        lookahead_days: Also cover this many days after each owner's today
        now: Optional ISO-8601 instant to run as

    Returns:
        Created, skipped and failed counts
    """
    runtime = await ensure_initialized()
    from taskly.clock import utc_now

    try:
        instant = _parse_now(now) or utc_now()
        result = await runtime.generator.generate_due_instances(instant, lookahead_days=lookahead_days)
    except ValueError as e:
        return {"error": str(e)}

    return result.to_dict()


@mcp.tool()
async def taskly_maintenance(now: Optional[str] = None) -> dict:
    """
    Run the weekly maintenance job: repair broken recurring templates, detach
    orphaned instances, expire finished templates, archive old completed
    instances and delete old notification records.

    Args:
        now: Optional ISO-8601 instant to run as

    Returns:
        Counts per maintenance step
    """
    runtime = await ensure_initialized()
    try:
        instant = _parse_now(now)
    except ValueError as e:
        return {"error": f"Invalid now: {e}"}

    return await runtime.scheduler.run_maintenance(instant)


# =============================================================================
# TASK TOOLS
# =============================================================================

@mcp.tool()
async def taskly_complete(task_id: str, owner_id: str) -> dict:
    """
    Complete a task. For an instance of a recurring task, the next
    occurrence is created right away.

    Args:
        task_id: Task UUID
        owner_id: Owning user UUID

    Returns:
        The completed task and the next instance, if one was created
    """
    runtime = await ensure_initialized()
    result = await runtime.generator.complete_task(task_id, owner_id)

    if result.task is None:
        return {"error": f"Task not found: {task_id}"}

    return {
        "task": result.task.to_dict(),
        "next_instance": result.next_instance.to_dict() if result.next_instance else None,
    }


@mcp.tool()
async def taskly_recurring_info(task_id: str, owner_id: str) -> dict:
    """
    Describe the recurring series a task belongs to.

    Args:
        task_id: Template or instance UUID
        owner_id: Owning user UUID

    Returns:
        Template, instances, next occurrence and totals
    """
    runtime = await ensure_initialized()
    try:
        info = await runtime.generator.recurring_info(task_id, owner_id)
    except LookupError as e:
        return {"error": str(e)}

    return info.to_dict()


@mcp.tool()
async def taskly_stop_recurring(task_id: str, owner_id: str) -> dict:
    """
    Stop a recurring series so no more instances are generated.

    Args:
        task_id: Template or instance UUID
        owner_id: Owning user UUID

    Returns:
        The stopped template
    """
    runtime = await ensure_initialized()
    try:
        template = await runtime.generator.stop_recurring(task_id, owner_id)
    except (LookupError, ValueError) as e:
        return {"error": str(e)}

    return template.to_dict()


@mcp.tool()
async def taskly_classify(task_id: str, now: Optional[str] = None) -> dict:
    """
    Classify a task's due status in its owner's time zone.

    Args:
        task_id: Task UUID
        now: Optional ISO-8601 instant to classify at

    Returns:
        Due status, owner-local date, and whether a reminder is still owed
    """
    runtime = await ensure_initialized()
    from taskly.clock import local_date, resolve_zone, utc_now
    from taskly.eligibility import classify_at, is_notification_owed

    try:
        instant = _parse_now(now) or utc_now()
    except ValueError as e:
        return {"error": f"Invalid now: {e}"}

    task = await runtime.tasks.get(task_id)
    if task is None:
        return {"error": f"Task not found: {task_id}"}

    owner = await runtime.users.get(task.owner_id)
    zone = resolve_zone(owner.timezone if owner else None, runtime.config.default_timezone)
    today = local_date(instant, zone)

    return {
        "task_id": task.id,
        "status": classify_at(task, instant, zone).value,
        "today": today.isoformat(),
        "timezone": zone.key,
        "notification_owed": is_notification_owed(task, today),
        "notified_status": task.notified_status if task.notification_sent else None,
    }


@mcp.tool()
async def taskly_send_reminder(user_id: str, text: str) -> dict:
    """
    Send a free-text reminder to one user.

    Args:
        user_id: Recipient user UUID
        text: Reminder text (plain, escaped for Telegram)

    Returns:
        The recorded notification
    """
    runtime = await ensure_initialized()
    from taskly.clock import utc_now

    try:
        record = await runtime.dispatcher.send_custom(user_id, text, utc_now())
    except (LookupError, RuntimeError) as e:
        return {"error": str(e)}

    return record.to_dict()


@mcp.tool()
async def taskly_notifications(user_id: str, limit: int = 20) -> dict:
    """
    List the most recent notification records for a user.

    Args:
        user_id: Recipient user UUID
        limit: Maximum records to return

    Returns:
        Notification records, newest first
    """
    runtime = await ensure_initialized()
    records = await runtime.notifications.list_for_user(user_id, limit=limit)
    return {"user_id": user_id, "notifications": [r.to_dict() for r in records]}


@mcp.tool()
async def taskly_set_delivery_status(notification_id: str, status: str) -> dict:
    """
    Mark a sent notification as delivered or failed.

    Args:
        notification_id: Notification record UUID
        status: "delivered" or "failed"

    Returns:
        The updated record
    """
    runtime = await ensure_initialized()
    try:
        moved = await runtime.notifications.set_status(notification_id, status)
    except ValueError as e:
        return {"error": str(e)}

    if not moved:
        return {"error": f"Notification not found: {notification_id}"}
    record = await runtime.notifications.get(notification_id)
    return record.to_dict()


# =============================================================================
# UTILITY TOOLS
# =============================================================================

@mcp.tool()
async def taskly_migrate() -> dict:
    """
    Run pending database migrations.

    Returns:
        Migration status and the files applied
    """
    runtime = await ensure_initialized()
    from taskly.db import run_migrations

    applied = await run_migrations(runtime.adapter)
    return {"status": "migrations complete", "applied": applied}


@mcp.tool()
async def taskly_health() -> dict:
    """
    Check database connectivity and scheduler state.

    Returns:
        Health status including database type and channel configuration
    """
    runtime = await ensure_initialized()
    adapter = runtime.adapter

    # Test query
    try:
        result = await adapter.fetchval("SELECT 1")
        connected = result == 1
    except Exception as e:
        connected = False
        logger.error(f"Health check failed: {e}")

    return {
        "status": "healthy" if connected else "unhealthy",
        "database_type": adapter.dialect,
        "channel_configured": runtime.channel is not None,
        "scheduler_running": runtime.scheduler.running,
        "next_runs": {
            job_id: when.isoformat() if when else None
            for job_id, when in runtime.scheduler.next_run_times().items()
        },
        "default_timezone": runtime.config.default_timezone,
    }


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

async def run_scheduler() -> None:
    """Run the periodic jobs until SIGINT or SIGTERM."""
    runtime = await ensure_initialized()
    handle = runtime.scheduler.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still cancels
            pass

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down scheduler")
        await handle.stop()
        await shutdown()


def main():
    """Main entry point for taskly-mcp command."""
    import argparse

    parser = argparse.ArgumentParser(description="Taskly MCP Server")
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=("serve", "migrate", "tick", "scheduler"),
        help="Command to run (serve, migrate, tick, scheduler)",
    )
    parser.add_argument("--now", help="ISO-8601 instant for the tick command")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    if args.command in ("tick", "scheduler"):
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )

    if args.command == "migrate":
        # Run migrations only
        async def do_migrate():
            await ensure_initialized()
            await shutdown()
            print("Migrations complete")

        asyncio.run(do_migrate())
    elif args.command == "tick":
        async def do_tick():
            try:
                result = await taskly_tick(args.now)
            finally:
                await shutdown()
            print(result)

        asyncio.run(do_tick())
    elif args.command == "scheduler":
        try:
            asyncio.run(run_scheduler())
        except KeyboardInterrupt:
            pass
    else:
        # Start MCP server
        mcp.run()


if __name__ == "__main__":
    main()
