from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from ibadah.prayer_times import CALCULATION_METHODS


class ConfigError(ValueError):
    """Raised when configuration loading or validation fails."""


DEFAULT_SCHEDULE = {
    "adhkar_morning": 6,
    "daily_wisdom": 8,
    "adhkar_evening": 17,
    "quran_reminder": 20,
}


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False


@dataclass(frozen=True)
class PrayerApiConfig:
    base_url: str
    timeout_seconds: int
    method: int


@dataclass(frozen=True)
class LineConfig:
    channel_access_token: str
    channel_secret: str
    api_base_url: str
    timeout_seconds: int


@dataclass(frozen=True)
class SupabaseConfig:
    url: str
    service_role_key: str
    timeout_seconds: int


@dataclass(frozen=True)
class CronConfig:
    secret: str
    trusted_header: str


@dataclass(frozen=True)
class DispatchConfig:
    send_window_minutes: int
    default_timezone: str
    default_location_name: str
    default_reminder_minutes: int
    schedule: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_SCHEDULE))


@dataclass(frozen=True)
class SchedulerConfig:
    enabled: bool
    misfire_grace_seconds: int


@dataclass(frozen=True)
class ServerConfig:
    host: str
    port: int


@dataclass(frozen=True)
class SiteConfig:
    base_url: str


@dataclass(frozen=True)
class LoggingConfig:
    file_path: Optional[str]
    level: str


@dataclass(frozen=True)
class AppConfig:
    database: DatabaseConfig
    prayer_api: PrayerApiConfig
    line: LineConfig
    supabase: SupabaseConfig
    cron: CronConfig
    dispatch: DispatchConfig
    scheduler: SchedulerConfig
    server: ServerConfig
    site: SiteConfig
    logging: LoggingConfig


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(value, dict)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Failed to read config file: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file: {path}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping at root of config file: {path}")
    return data


class ConfigLoader:
    def __init__(self, root_dir: Path | None = None) -> None:
        self._root_dir = root_dir

    def load(self) -> AppConfig:
        root_dir = self._resolve_root_dir()
        config_path = root_dir / "config.yml"
        if not config_path.exists():
            raise ConfigError(f"Missing base config file: {config_path}")

        merged: Dict[str, Any] = {}
        merged = _deep_merge(merged, _load_yaml(config_path))

        config_d = root_dir / "config.d"
        if config_d.exists():
            for path in sorted(config_d.glob("*.yml")):
                merged = _deep_merge(merged, _load_yaml(path))

        # Tokens and keys live in secrets.yml so config.yml can be committed.
        secrets_path = root_dir / "secrets.yml"
        if secrets_path.exists():
            merged = _deep_merge(merged, _load_yaml(secrets_path))

        config = self._build_config(merged)
        self._validate(config)
        return config

    def _resolve_root_dir(self) -> Path:
        if self._root_dir is not None:
            return self._root_dir
        env_dir = os.getenv("IBADAH_CONFIG_DIR")
        if env_dir:
            return Path(env_dir)
        return Path("/etc/ibadah")

    def _build_config(self, data: Dict[str, Any]) -> AppConfig:
        try:
            database_data = data["database"]
            line_data = data["line"]
        except KeyError as exc:
            raise ConfigError(f"Missing config section: {exc.args[0]}") from exc

        prayer_api_data = data.get("prayer_api", {})
        supabase_data = data.get("supabase", {})
        cron_data = data.get("cron", {})
        dispatch_data = data.get("dispatch", {})
        scheduler_data = data.get("scheduler", {})
        server_data = data.get("server", {})
        site_data = data.get("site", {})
        logging_data = data.get("logging", {})

        try:
            database = DatabaseConfig(
                url=database_data["url"],
                echo=bool(database_data.get("echo", False)),
            )
            line = LineConfig(
                channel_access_token=line_data["channel_access_token"],
                channel_secret=line_data["channel_secret"],
                api_base_url=line_data.get("api_base_url", "https://api.line.me/v2/bot"),
                timeout_seconds=int(line_data.get("timeout_seconds", 10)),
            )
            prayer_api = PrayerApiConfig(
                base_url=prayer_api_data.get("base_url", "https://api.aladhan.com/v1"),
                timeout_seconds=int(prayer_api_data.get("timeout_seconds", 8)),
                method=int(prayer_api_data.get("method", 3)),
            )
            supabase = SupabaseConfig(
                url=supabase_data.get("url", ""),
                service_role_key=supabase_data.get("service_role_key", ""),
                timeout_seconds=int(supabase_data.get("timeout_seconds", 8)),
            )
            cron = CronConfig(
                secret=cron_data.get("secret", "") or "",
                trusted_header=cron_data.get("trusted_header", "X-Vercel-Cron"),
            )
            dispatch = DispatchConfig(
                send_window_minutes=int(dispatch_data.get("send_window_minutes", 5)),
                default_timezone=dispatch_data.get("default_timezone", "Asia/Bangkok"),
                default_location_name=dispatch_data.get("default_location_name", "Bangkok"),
                default_reminder_minutes=int(
                    dispatch_data.get("default_reminder_minutes", 10)
                ),
                schedule={
                    name: int(hour)
                    for name, hour in _deep_merge(
                        DEFAULT_SCHEDULE, dispatch_data.get("schedule", {})
                    ).items()
                },
            )
            scheduler = SchedulerConfig(
                enabled=bool(scheduler_data.get("enabled", False)),
                misfire_grace_seconds=int(scheduler_data.get("misfire_grace_seconds", 60)),
            )
            server = ServerConfig(
                host=server_data.get("host", "0.0.0.0"),
                port=int(server_data.get("port", 8080)),
            )
            site = SiteConfig(
                base_url=site_data.get("base_url", "https://ibadah-station.vercel.app").rstrip("/"),
            )
            logging_config = LoggingConfig(
                file_path=logging_data.get("file_path"),
                level=str(logging_data.get("level", "INFO")).upper(),
            )
        except KeyError as exc:
            raise ConfigError(f"Missing config key: {exc.args[0]}") from exc
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid config value: {exc}") from exc

        return AppConfig(
            database=database,
            prayer_api=prayer_api,
            line=line,
            supabase=supabase,
            cron=cron,
            dispatch=dispatch,
            scheduler=scheduler,
            server=server,
            site=site,
            logging=logging_config,
        )

    def _validate(self, config: AppConfig) -> None:
        self._validate_dispatch(config.dispatch)
        if config.prayer_api.method not in CALCULATION_METHODS:
            raise ConfigError(
                f"Unknown prayer calculation method: {config.prayer_api.method}"
            )
        if not 1 <= config.server.port <= 65535:
            raise ConfigError(f"Server port out of range: {config.server.port}")

    def _validate_dispatch(self, dispatch: DispatchConfig) -> None:
        if not 1 <= dispatch.send_window_minutes <= 60:
            raise ConfigError(
                f"send_window_minutes out of range: {dispatch.send_window_minutes}"
            )
        if not 0 <= dispatch.default_reminder_minutes <= 60:
            raise ConfigError(
                f"default_reminder_minutes out of range: {dispatch.default_reminder_minutes}"
            )
        try:
            ZoneInfo(dispatch.default_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(
                f"Unknown default timezone: {dispatch.default_timezone}"
            ) from exc
        for name, hour in dispatch.schedule.items():
            if name not in DEFAULT_SCHEDULE:
                raise ConfigError(f"Unknown scheduled notification: {name}")
            if not 0 <= hour <= 23:
                raise ConfigError(f"Schedule hour out of range for {name}: {hour}")
