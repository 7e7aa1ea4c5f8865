from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
import tomllib

from .schedule import DEDUP_DATE_AND_FINGERPRINT, DEDUP_KEYS

COMMIT_PARTIAL = "partial"
COMMIT_ALL_OR_NOTHING = "all_or_nothing"
COMMIT_MODES = (COMMIT_PARTIAL, COMMIT_ALL_OR_NOTHING)

DIYANET_API = "https://prayertimes.api.abdus.dev/api/diyanet"


def _default_config_root() -> Path:
    return Path.home() / ".config" / "vakit"


def _default_store_path() -> Path:
    return Path.home() / ".local" / "share" / "vakit" / "store.json"


def _toml_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f"\"{escaped}\""


@dataclass(slots=True)
class LocationSettings:
    id: str = ""
    name: str = ""


@dataclass(slots=True)
class ProviderSettings:
    name: str = "diyanet"
    base_url: str = DIYANET_API
    timeout: float = 10.0
    refresh_hours: int = 6


@dataclass(slots=True)
class SchedulerSettings:
    safety_margin_seconds: int = 0
    commit_timeout_seconds: float = 30.0
    dedup_key: str = DEDUP_DATE_AND_FINGERPRINT
    commit_mode: str = COMMIT_PARTIAL

    @property
    def safety_margin(self) -> timedelta:
        return timedelta(seconds=self.safety_margin_seconds)


@dataclass(slots=True)
class NotificationSettings:
    title: str = "{name} Vakti"
    body: str = "{name} vakti girdi."

    def render(self, display_name: str) -> tuple[str, str]:
        return self.title.format(name=display_name), self.body.format(name=display_name)


@dataclass(slots=True)
class StorageSettings:
    path: Path = field(default_factory=_default_store_path)


@dataclass(slots=True)
class VakitConfig:
    location: LocationSettings
    provider: ProviderSettings
    scheduler: SchedulerSettings
    notifications: NotificationSettings
    storage: StorageSettings

    @classmethod
    def default(cls) -> "VakitConfig":
        return cls(
            location=LocationSettings(),
            provider=ProviderSettings(),
            scheduler=SchedulerSettings(),
            notifications=NotificationSettings(),
            storage=StorageSettings(),
        )

    def to_dict(self) -> dict:
        return {
            "location": {
                "id": self.location.id,
                "name": self.location.name,
            },
            "provider": {
                "name": self.provider.name,
                "base_url": self.provider.base_url,
                "timeout": self.provider.timeout,
                "refresh_hours": self.provider.refresh_hours,
            },
            "scheduler": {
                "safety_margin_seconds": self.scheduler.safety_margin_seconds,
                "commit_timeout_seconds": self.scheduler.commit_timeout_seconds,
                "dedup_key": self.scheduler.dedup_key,
                "commit_mode": self.scheduler.commit_mode,
            },
            "notifications": {
                "title": self.notifications.title,
                "body": self.notifications.body,
            },
            "storage": {
                "path": str(self.storage.path),
            },
        }


class ConfigManager:
    """Simple TOML configuration loader."""

    def __init__(self, config_path: Path | None = None) -> None:
        self.config_path = config_path or (_default_config_root() / "config.toml")
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self._errors: list[str] = []

    def errors(self) -> list[str]:
        return list(self._errors)

    def load(self) -> VakitConfig:
        self._errors.clear()
        if not self.config_path.exists():
            config = VakitConfig.default()
            self._write(config)
            return config

        try:
            with self.config_path.open("rb") as handle:
                raw = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            self._errors.append(f"Invalid config file: {exc}")
            return VakitConfig.default()

        location_cfg = raw.get("location", {})
        provider_cfg = raw.get("provider", {})
        scheduler_cfg = raw.get("scheduler", {})
        notifications_cfg = raw.get("notifications", {})
        storage_cfg = raw.get("storage", {})
        defaults = VakitConfig.default()

        def _number(section: dict, key: str, default, cast, minimum):
            value = section.get(key, default)
            try:
                number = cast(value)
            except (TypeError, ValueError):
                self._errors.append(f"Invalid {key}: {value!r}")
                return default
            if number < minimum:
                self._errors.append(f"Invalid {key}: {value!r}")
                return default
            return number

        def _choice(section: dict, key: str, default: str, choices: tuple[str, ...]) -> str:
            value = str(section.get(key, default)).strip().lower()
            if value not in choices:
                self._errors.append(f"Invalid {key}: {value!r} (expected one of {', '.join(choices)})")
                return default
            return value

        def _template(section: dict, key: str, default: str) -> str:
            value = section.get(key, default)
            try:
                str(value).format(name="Test")
            except (KeyError, IndexError, ValueError):
                self._errors.append(f"Invalid notifications.{key}: {value!r}")
                return default
            return str(value)

        store_path_value = storage_cfg.get("path") or str(defaults.storage.path)

        return VakitConfig(
            location=LocationSettings(
                id=str(location_cfg.get("id", "") or ""),
                name=str(location_cfg.get("name", "") or ""),
            ),
            provider=ProviderSettings(
                name=provider_cfg.get("name", defaults.provider.name),
                base_url=str(provider_cfg.get("base_url", defaults.provider.base_url)).rstrip("/"),
                timeout=_number(provider_cfg, "timeout", defaults.provider.timeout, float, 0.1),
                refresh_hours=_number(provider_cfg, "refresh_hours", defaults.provider.refresh_hours, int, 1),
            ),
            scheduler=SchedulerSettings(
                safety_margin_seconds=_number(scheduler_cfg, "safety_margin_seconds", 0, int, 0),
                commit_timeout_seconds=_number(
                    scheduler_cfg,
                    "commit_timeout_seconds",
                    defaults.scheduler.commit_timeout_seconds,
                    float,
                    0.1,
                ),
                dedup_key=_choice(scheduler_cfg, "dedup_key", defaults.scheduler.dedup_key, DEDUP_KEYS),
                commit_mode=_choice(scheduler_cfg, "commit_mode", defaults.scheduler.commit_mode, COMMIT_MODES),
            ),
            notifications=NotificationSettings(
                title=_template(notifications_cfg, "title", defaults.notifications.title),
                body=_template(notifications_cfg, "body", defaults.notifications.body),
            ),
            storage=StorageSettings(path=Path(store_path_value).expanduser()),
        )

    def _write(self, config: VakitConfig) -> None:
        data = config.to_dict()
        lines = [
            "[location]",
            f"id = {_toml_string(data['location']['id'])}",
            f"name = {_toml_string(data['location']['name'])}",
            "",
            "[provider]",
            f"name = {_toml_string(data['provider']['name'])}",
            f"base_url = {_toml_string(data['provider']['base_url'])}",
            f"timeout = {data['provider']['timeout']}",
            f"refresh_hours = {data['provider']['refresh_hours']}",
            "",
            "[scheduler]",
            f"safety_margin_seconds = {data['scheduler']['safety_margin_seconds']}",
            f"commit_timeout_seconds = {data['scheduler']['commit_timeout_seconds']}",
            f"dedup_key = {_toml_string(data['scheduler']['dedup_key'])}",
            f"commit_mode = {_toml_string(data['scheduler']['commit_mode'])}",
            "",
            "[notifications]",
            f"title = {_toml_string(data['notifications']['title'])}",
            f"body = {_toml_string(data['notifications']['body'])}",
            "",
            "[storage]",
            f"path = {_toml_string(data['storage']['path'])}",
        ]
        self.config_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    def save(self, config: VakitConfig) -> None:
        self._write(config)
