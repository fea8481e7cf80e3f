from __future__ import annotations

import argparse
from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from ibadah.accounts import AccountService
from ibadah.auth import SupabaseAuthClient
from ibadah.config import AppConfig, ConfigError, ConfigLoader
from ibadah.db import Database
from ibadah.dispatch import PrayerDispatcher, ScheduledDispatcher
from ibadah.line_messaging import LineMessagingClient
from ibadah.logging_utils import LoggerFactory
from ibadah.messages import MessageBuilder
from ibadah.prayer_api import PrayerApiClient
from ibadah.prayer_times import Clock, PrayerTimeResolver
from ibadah.store import NotificationStore
from ibadah.webhook import WebhookHandler


@dataclass
class Services:
    database: Database
    store: NotificationStore
    gateway: LineMessagingClient
    resolver: PrayerTimeResolver
    prayer_dispatcher: PrayerDispatcher
    scheduled_dispatcher: ScheduledDispatcher
    webhook_handler: WebhookHandler
    accounts: AccountService


def build_services(config: AppConfig, *, clock: Optional[Clock] = None) -> Services:
    database = Database(config.database.url, echo=config.database.echo)
    store = NotificationStore(database)
    gateway = LineMessagingClient(
        channel_access_token=config.line.channel_access_token,
        channel_secret=config.line.channel_secret,
        base_url=config.line.api_base_url,
        timeout_seconds=config.line.timeout_seconds,
    )
    resolver = PrayerTimeResolver(
        api_client=PrayerApiClient(
            base_url=config.prayer_api.base_url,
            timeout_seconds=config.prayer_api.timeout_seconds,
        ),
        store=store,
        method=config.prayer_api.method,
    )
    messages = MessageBuilder(site_url=config.site.base_url)
    common = dict(
        store=store,
        gateway=gateway,
        messages=messages,
        config=config.dispatch,
        clock=clock,
    )
    return Services(
        database=database,
        store=store,
        gateway=gateway,
        resolver=resolver,
        prayer_dispatcher=PrayerDispatcher(resolver=resolver, **common),
        scheduled_dispatcher=ScheduledDispatcher(**common),
        webhook_handler=WebhookHandler(
            store=store,
            gateway=gateway,
            messages=messages,
            schedule=config.dispatch.schedule,
        ),
        accounts=AccountService(resolver=resolver, **common),
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        config_dir = Path(args.config) if args.config else None
        config = ConfigLoader(root_dir=config_dir).load()
    except ConfigError as exc:
        LoggerFactory.create("ibadah")
        logging.getLogger("ibadah").error("Config error: %s", exc)
        return 2

    log_path = os.getenv("IBADAH_LOG_PATH") or config.logging.file_path
    LoggerFactory.create("ibadah", log_file=log_path, level=config.logging.level)
    LoggerFactory.attach_root("ibadah")
    logger = logging.getLogger("ibadah")
    logger.info("Config summary: %s", _config_summary(config))

    services = build_services(config)

    if args.dry_run:
        logger.info("Dry-run mode enabled; %s wired, nothing sent.", args.command)
        return 0

    if args.command == "init-db":
        services.database.create_all()
        return 0

    if args.command == "dispatch":
        dispatcher = (
            services.prayer_dispatcher
            if args.kind == "prayer"
            else services.scheduled_dispatcher
        )
        result = dispatcher.run()
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
        return 0

    return _serve(config, services, logger)


def _serve(config: AppConfig, services: Services, logger: logging.Logger) -> int:
    from ibadah.server import NotificationServer

    server = NotificationServer(
        prayer_dispatcher=services.prayer_dispatcher,
        scheduled_dispatcher=services.scheduled_dispatcher,
        webhook_handler=services.webhook_handler,
        accounts=services.accounts,
        gateway=services.gateway,
        token_verifier=SupabaseAuthClient(
            url=config.supabase.url,
            service_role_key=config.supabase.service_role_key,
            timeout_seconds=config.supabase.timeout_seconds,
        ),
        cron_secret=config.cron.secret,
        trusted_cron_header=config.cron.trusted_header,
        host=config.server.host,
        port=config.server.port,
    )

    if config.scheduler.enabled:
        # APScheduler is only needed when no external cron drives the sweeps.
        from apscheduler.schedulers.background import BackgroundScheduler

        from ibadah.scheduler import DispatchScheduler

        dispatch_scheduler = DispatchScheduler(
            scheduler=BackgroundScheduler(),
            prayer_sweep=services.prayer_dispatcher.run,
            scheduled_sweep=services.scheduled_dispatcher.run,
            prayer_interval_minutes=config.dispatch.send_window_minutes,
            misfire_grace_seconds=config.scheduler.misfire_grace_seconds,
        )
        dispatch_scheduler.schedule_jobs()
        dispatch_scheduler.start()
    else:
        logger.info("In-process scheduler disabled; expecting external cron calls.")

    logger.info("Starting notification server on %s:%s", server.host, server.port)
    server.app.run(host=server.host, port=server.port)
    return 0


def _config_summary(config: AppConfig) -> dict:
    return {
        "database": {"url": config.database.url.split("@")[-1]},
        "prayer_api": {
            "base_url": config.prayer_api.base_url,
            "timeout_seconds": config.prayer_api.timeout_seconds,
            "method": config.prayer_api.method,
        },
        "line": {
            "api_base_url": config.line.api_base_url,
            "timeout_seconds": config.line.timeout_seconds,
            "channel_access_token_set": bool(config.line.channel_access_token),
            "channel_secret_set": bool(config.line.channel_secret),
        },
        "supabase": {"url": config.supabase.url},
        "cron": {
            "secret_set": bool(config.cron.secret),
            "trusted_header": config.cron.trusted_header,
        },
        "dispatch": {
            "send_window_minutes": config.dispatch.send_window_minutes,
            "default_timezone": config.dispatch.default_timezone,
            "default_location_name": config.dispatch.default_location_name,
            "default_reminder_minutes": config.dispatch.default_reminder_minutes,
            "schedule": dict(config.dispatch.schedule),
        },
        "scheduler": {"enabled": config.scheduler.enabled},
        "server": {"host": config.server.host, "port": config.server.port},
        "site": {"base_url": config.site.base_url},
        "logging": {"file_path": config.logging.file_path, "level": config.logging.level},
    }


def _parse_args(argv: Optional[Iterable[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ibadah Station notification service")
    parser.add_argument("--config", help="Directory holding config.yml")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate config and wiring without sending anything",
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run the HTTP endpoints")
    dispatch = subparsers.add_parser("dispatch", help="Run one dispatch sweep and print the summary")
    dispatch.add_argument("kind", choices=["prayer", "scheduled"])
    subparsers.add_parser("init-db", help="Create missing tables")
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.command is None:
        args.command = "serve"
    return args


if __name__ == "__main__":
    raise SystemExit(main())
