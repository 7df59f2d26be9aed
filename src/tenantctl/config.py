"""Configuration loader for tenantctl.

Provisioning runs take a single positional argument; everything else (paths,
remote URLs, service accounts) comes from configuration resolved in layers:

1. Built-in defaults.
2. ``/etc/tenantctl/config.yml`` (or the path in ``TENANTCTL_CONFIG_FILE``).
3. Environment variables prefixed with ``TENANTCTL_``.
4. Explicit overrides supplied programmatically (used by tests).

Environment keys use double underscores to express nesting, e.g.::

    export TENANTCTL_BASE_DOMAIN=example.net
    export TENANTCTL_TLS__WARN_EXPIRY_DAYS=14

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
lists are parsed naturally. The result is exposed as immutable dataclasses.
"""
from __future__ import annotations

import copy
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load tenantctl configuration. Install with "
        "`pip install tenantctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "TENANTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PermissionSpec:
    """Expected ownership and mode for an installed file."""

    owner: str
    group: str | None
    mode: int

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "owner": self.owner,
            "group": self.group,
            "mode": f"{self.mode:04o}",
        }


@dataclass(frozen=True)
class ApacheConfig:
    """Apache integration settings (Debian layout)."""

    sites_available: Path = Path("/etc/apache2/sites-available")
    a2ensite_bin: str = "a2ensite"
    a2enmod_bin: str = "a2enmod"
    apachectl_bin: str = "apache2ctl"
    service: str = "apache2"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "sites_available": str(self.sites_available),
            "a2ensite_bin": self.a2ensite_bin,
            "a2enmod_bin": self.a2enmod_bin,
            "apachectl_bin": self.apachectl_bin,
            "service": self.service,
        }


@dataclass(frozen=True)
class AsteriskConfig:
    """Telephony server control settings."""

    binary: str = "asterisk"
    reload_command: str = "core reload"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"binary": self.binary, "reload_command": self.reload_command}


@dataclass(frozen=True)
class TLSConfig:
    """Wildcard certificate source and its two installed residences."""

    remote_url: str = "https://config-telemarketing.gesditel.app/wildcard/certificate.pem"
    web_cert: Path = Path("/etc/ssl/wildcard/certificate.pem")
    telephony_cert: Path = Path("/etc/asterisk/keys/asterisk.pem")
    warn_expiry_days: int = 30
    web_permissions: PermissionSpec = PermissionSpec(owner="root", group="root", mode=0o644)
    telephony_permissions: PermissionSpec = PermissionSpec(
        owner="root",
        group="asterisk",
        mode=0o640,
    )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "remote_url": self.remote_url,
            "web_cert": str(self.web_cert),
            "telephony_cert": str(self.telephony_cert),
            "warn_expiry_days": self.warn_expiry_days,
            "web_permissions": self.web_permissions.to_dict(),
            "telephony_permissions": self.telephony_permissions.to_dict(),
        }


@dataclass(frozen=True)
class CalendarConfig:
    """Location of the calendar view refreshed from the remote package."""

    remote_url: str = "https://config-telemarketing.gesditel.app/calendar/calendar.zip"
    relative_dir: Path = Path("application/views/report")
    target: Path = Path("calendar.php")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "remote_url": self.remote_url,
            "relative_dir": str(self.relative_dir),
            "target": str(self.target),
        }


@dataclass(frozen=True)
class RewriteConfig:
    """Exclusion rules for the in-tree hostname rewrite."""

    exclude_dirs: tuple[str, ...] = (".git", "node_modules")
    exclude_globs: tuple[str, ...] = ("*.zip", "*.tar*", "*.bkp-*")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "exclude_dirs": list(self.exclude_dirs),
            "exclude_globs": list(self.exclude_globs),
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for tenantctl."""

    config_file: Path
    base_domain: str
    web_root: Path
    app_dir: str
    placeholder_host: str
    service_user: str
    service_group: str
    require_root: bool
    logs_dir: Path
    templates_dir: Path
    systemctl_bin: str
    transports: tuple[str, ...]
    apache: ApacheConfig
    asterisk: AsteriskConfig
    tls: TLSConfig
    calendar: CalendarConfig
    rewrite: RewriteConfig

    @property
    def app_root(self) -> Path:
        """Return the deployed application directory."""
        return self.web_root / self.app_dir

    @property
    def calendar_dir(self) -> Path:
        """Return the directory the calendar package is extracted into."""
        return self.app_root / self.calendar.relative_dir

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "base_domain": self.base_domain,
            "web_root": str(self.web_root),
            "app_dir": self.app_dir,
            "placeholder_host": self.placeholder_host,
            "service_user": self.service_user,
            "service_group": self.service_group,
            "require_root": self.require_root,
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "systemd": {"systemctl_bin": self.systemctl_bin},
            "fetch": {"transports": list(self.transports)},
            "apache": self.apache.to_dict(),
            "asterisk": self.asterisk.to_dict(),
            "tls": self.tls.to_dict(),
            "calendar": self.calendar.to_dict(),
            "rewrite": self.rewrite.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/tenantctl/config.yml",
    "base_domain": "gesditel.app",
    "web_root": "/var/www/html",
    "app_dir": "qalliEz",
    "placeholder_host": "demo.gesditel.app",
    "service_user": "asterisk",
    "service_group": "asterisk",
    "require_root": True,
    "logs_dir": "/var/log/tenantctl",
    "templates_dir": "/etc/tenantctl/templates",
    "systemd": {
        "systemctl_bin": "systemctl",
    },
    "fetch": {
        "transports": ["curl", "wget"],
    },
    "apache": {
        "sites_available": "/etc/apache2/sites-available",
        "a2ensite_bin": "a2ensite",
        "a2enmod_bin": "a2enmod",
        "apachectl_bin": "apache2ctl",
        "service": "apache2",
    },
    "asterisk": {
        "binary": "asterisk",
        "reload_command": "core reload",
    },
    "tls": {
        "remote_url": "https://config-telemarketing.gesditel.app/wildcard/certificate.pem",
        "web_cert": "/etc/ssl/wildcard/certificate.pem",
        "telephony_cert": "/etc/asterisk/keys/asterisk.pem",
        "warn_expiry_days": 30,
        "web_permissions": {"owner": "root", "group": "root", "mode": "0644"},
        "telephony_permissions": {"owner": "root", "group": "asterisk", "mode": "0640"},
    },
    "calendar": {
        "remote_url": "https://config-telemarketing.gesditel.app/calendar/calendar.zip",
        "relative_dir": "application/views/report",
        "target": "calendar.php",
    },
    "rewrite": {
        "exclude_dirs": [".git", "node_modules"],
        "exclude_globs": ["*.zip", "*.tar*", "*.bkp-*"],
    },
}

SECTION_KEYS: dict[str, frozenset[str]] = {
    name: frozenset(cast(Mapping[str, object], value))
    for name, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}
ALLOWED_TRANSPORTS = frozenset({"curl", "wget"})
PERMISSION_KEYS = frozenset({"owner", "group", "mode"})


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Resolve every configuration layer into an :class:`AppConfig`."""
    environ = os.environ if env is None else env
    raw = cast(dict[str, object], copy.deepcopy(DEFAULTS))

    if config_file:
        path = Path(config_file)
    elif CONFIG_ENV_VAR in environ:
        path = Path(environ[CONFIG_ENV_VAR])
    else:
        path = Path(str(DEFAULTS["config_file"]))

    for layer in (_read_file(path), _env_layer(environ), dict(overrides or {})):
        _merge_into(raw, layer)
    raw["config_file"] = str(path)

    _check_keys(raw)
    return _build(raw)


def _read_file(path: Path) -> dict[str, object]:
    if not path.is_file():
        return {}
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _mapping(loaded, str(path))


def _env_layer(environ: Mapping[str, str]) -> dict[str, object]:
    """Turn ``TENANTCTL_A__B=value`` variables into ``{"a": {"b": value}}``."""
    layer: dict[str, object] = {}
    for key, value in environ.items():
        if key == CONFIG_ENV_VAR or not key.startswith(ENV_PREFIX):
            continue
        segments = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
        if not segments:
            continue
        node = layer
        for segment in segments[:-1]:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Environment variable {key} nests below a scalar value.")
            node = child
        node[segments[-1]] = _parse_scalar(value)
    return layer


def _parse_scalar(text: str) -> object:
    try:
        return yaml.safe_load(text.strip())
    except yaml.YAMLError:
        return text.strip()


def _merge_into(target: dict[str, object], layer: Mapping[str, object]) -> None:
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge_into(current, _mapping(value, key))
        else:
            target[key] = value


def _check_keys(raw: Mapping[str, object]) -> None:
    unknown = set(raw) - set(DEFAULTS)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}.")
    for section, allowed in SECTION_KEYS.items():
        extra = set(_mapping(raw.get(section), section)) - allowed
        if extra:
            raise ConfigError(f"Unknown {section} configuration keys: {', '.join(sorted(extra))}.")


def _build(raw: Mapping[str, object]) -> AppConfig:
    base_domain = _text(raw.get("base_domain"), "base_domain")

    fetch = _mapping(raw.get("fetch"), "fetch")
    transports = tuple(str(item) for item in _sequence(fetch.get("transports"), "fetch.transports"))
    if not transports:
        raise ConfigError("fetch.transports must list at least one transport.")
    unsupported = set(transports) - ALLOWED_TRANSPORTS
    if unsupported:
        raise ConfigError(
            f"Unsupported fetch transports: {', '.join(sorted(unsupported))}. "
            f"Allowed: {', '.join(sorted(ALLOWED_TRANSPORTS))}."
        )

    apache = _mapping(raw.get("apache"), "apache")
    asterisk = _mapping(raw.get("asterisk"), "asterisk")
    systemd = _mapping(raw.get("systemd"), "systemd")
    rewrite = _mapping(raw.get("rewrite"), "rewrite")

    return AppConfig(
        config_file=_path(raw.get("config_file"), "config_file"),
        base_domain=base_domain.lower(),
        web_root=_path(raw.get("web_root"), "web_root"),
        app_dir=_text(raw.get("app_dir"), "app_dir"),
        placeholder_host=_text(raw.get("placeholder_host"), "placeholder_host"),
        service_user=_text(raw.get("service_user"), "service_user"),
        service_group=_text(raw.get("service_group"), "service_group"),
        require_root=_boolean(raw.get("require_root"), "require_root"),
        logs_dir=_path(raw.get("logs_dir"), "logs_dir"),
        templates_dir=_path(raw.get("templates_dir"), "templates_dir"),
        systemctl_bin=str(systemd.get("systemctl_bin")),
        transports=transports,
        apache=ApacheConfig(
            sites_available=_path(apache.get("sites_available"), "apache.sites_available"),
            a2ensite_bin=str(apache.get("a2ensite_bin")),
            a2enmod_bin=str(apache.get("a2enmod_bin")),
            apachectl_bin=str(apache.get("apachectl_bin")),
            service=str(apache.get("service")),
        ),
        asterisk=AsteriskConfig(
            binary=str(asterisk.get("binary")),
            reload_command=str(asterisk.get("reload_command")),
        ),
        tls=_build_tls(_mapping(raw.get("tls"), "tls")),
        calendar=_build_calendar(_mapping(raw.get("calendar"), "calendar")),
        rewrite=RewriteConfig(
            exclude_dirs=tuple(
                str(item) for item in _sequence(rewrite.get("exclude_dirs"), "rewrite.exclude_dirs")
            ),
            exclude_globs=tuple(
                str(item) for item in _sequence(rewrite.get("exclude_globs"), "rewrite.exclude_globs")
            ),
        ),
    )


def _build_tls(tls: Mapping[str, object]) -> TLSConfig:
    defaults = TLSConfig()
    warn_days = _integer(tls.get("warn_expiry_days"), "tls.warn_expiry_days")
    if warn_days < 0:
        raise ConfigError("tls.warn_expiry_days must be non-negative.")
    return TLSConfig(
        remote_url=str(tls.get("remote_url")),
        web_cert=_path(tls.get("web_cert"), "tls.web_cert"),
        telephony_cert=_path(tls.get("telephony_cert"), "tls.telephony_cert"),
        warn_expiry_days=warn_days,
        web_permissions=_permission(
            tls.get("web_permissions"), defaults.web_permissions, "tls.web_permissions"
        ),
        telephony_permissions=_permission(
            tls.get("telephony_permissions"),
            defaults.telephony_permissions,
            "tls.telephony_permissions",
        ),
    )


def _build_calendar(calendar: Mapping[str, object]) -> CalendarConfig:
    relative_dir = Path(str(calendar.get("relative_dir")))
    target = Path(str(calendar.get("target")))
    if relative_dir.is_absolute() or target.is_absolute():
        raise ConfigError("calendar.relative_dir and calendar.target must be relative paths.")
    return CalendarConfig(
        remote_url=str(calendar.get("remote_url")),
        relative_dir=relative_dir,
        target=target,
    )


def _permission(value: object, default: PermissionSpec, label: str) -> PermissionSpec:
    """Build a :class:`PermissionSpec`; missing keys fall back to *default*."""
    mapping = _mapping(value, label)
    extra = set(mapping) - PERMISSION_KEYS
    if extra:
        raise ConfigError(f"Unknown keys for {label}: {', '.join(sorted(extra))}.")

    owner = mapping.get("owner", default.owner)
    if not isinstance(owner, str) or not owner.strip():
        raise ConfigError(f"{label}.owner must be a non-empty string.")
    group = mapping.get("group", default.group)
    if group is not None and not isinstance(group, str):
        raise ConfigError(f"{label}.group must be a string or null.")
    mode = _octal_mode(mapping.get("mode", default.mode), f"{label}.mode")
    return PermissionSpec(owner=owner.strip(), group=group or None, mode=mode)


def _octal_mode(value: object, label: str) -> int:
    """Accept ``0o640``, ``"0640"`` or ``"0o640"``."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigError(f"{label} must be an octal integer or string.")
    if isinstance(value, int):
        mode = value
    else:
        digits = value.strip().lower().removeprefix("0o")
        try:
            mode = int(digits, 8)
        except ValueError as exc:
            raise ConfigError(f"{label} must be an octal integer string, got {value!r}.") from exc
    if not 0 <= mode <= 0o777:
        raise ConfigError(f"{label} must be between 0000 and 0777 inclusive.")
    return mode


def _text(value: object, label: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ConfigError(f"{label} must be a non-empty string. Got {value!r}.")


def _path(value: object, label: str) -> Path:
    if isinstance(value, (str, Path)) and str(value):
        return Path(value).expanduser()
    raise ConfigError(f"Expected {label} to be a filesystem path. Got {value!r}.")


def _integer(value: object, label: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {value!r}.")


def _boolean(value: object, label: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _sequence(value: object, label: str) -> Sequence[object]:
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a list. Got {type(value).__name__}.")
    return value


def _mapping(value: object, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ApacheConfig",
    "AsteriskConfig",
    "CalendarConfig",
    "ConfigError",
    "PermissionSpec",
    "RewriteConfig",
    "TLSConfig",
    "load_config",
]
