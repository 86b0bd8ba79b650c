"""Configuration and secrets loading for fleetship."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import dotenv_values

from fleetship.errors import DeployError
from fleetship.errors_catalog import actionable_error
from fleetship.models import (
    AppEntry,
    BuildSpec,
    EnvironmentSpec,
    HealthCheckSpec,
    ProjectConfig,
    ProxySpec,
    RegistrySpec,
    ServiceEntry,
    SSHSettings,
)


class ConfigLoader:
    """Loads the project YAML file into typed entries."""

    SUPPORTED_KEYS = {"name", "ssh", "docker", "apps", "services"}
    SSH_KEYS = {"username", "port", "key_file", "hosts"}
    DOCKER_KEYS = {"registry", "username"}
    SERVICE_KEYS = {"name", "image", "servers", "ports", "volumes", "environment", "registry"}
    APP_KEYS = SERVICE_KEYS | {"build", "proxy", "health_check"}
    BUILD_KEYS = {"context", "dockerfile", "args", "platform", "target"}
    PROXY_KEYS = {"hosts", "app_port"}
    HEALTH_CHECK_KEYS = {
        "path",
        "port",
        "native",
        "attempts",
        "interval_seconds",
        "success_threshold",
        "timeout_seconds",
    }
    REGISTRY_KEYS = {"url", "username", "password_secret"}
    ENVIRONMENT_KEYS = {"plain", "secret"}

    def load(self, config_path: str) -> ProjectConfig:
        path = Path(config_path)
        if not path.exists():
            raise DeployError(actionable_error("config_not_found", path=str(config_path)))

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise DeployError(f"Invalid config file '{config_path}': {exc}") from exc

        if not isinstance(parsed, dict):
            raise DeployError("Config file must contain a YAML mapping at the root.")

        return self.parse(parsed)

    def load_secrets(self, secrets_path: Optional[str]) -> Dict[str, str]:
        if not secrets_path or not Path(secrets_path).exists():
            return {}

        try:
            values = dotenv_values(secrets_path)
        except (OSError, UnicodeDecodeError) as exc:
            raise DeployError(f"Could not read secrets file '{secrets_path}': {exc}") from exc

        return {key: value for key, value in values.items() if value is not None}

    def parse(self, data: Dict[str, Any]) -> ProjectConfig:
        self._reject_unknown(data, self.SUPPORTED_KEYS, "configuration")

        name = data.get("name")
        if not name or not isinstance(name, str):
            raise DeployError("Config is missing the project `name`.")

        docker = self._mapping(data.get("docker"), "docker")
        self._reject_unknown(docker, self.DOCKER_KEYS, "docker")

        apps = tuple(
            self._parse_app(raw) for raw in self._normalize_entries(data.get("apps"), "apps")
        )
        services = tuple(
            self._parse_service(raw)
            for raw in self._normalize_entries(data.get("services"), "services")
        )

        return ProjectConfig(
            name=name,
            apps=apps,
            services=services,
            ssh=self._parse_ssh(data.get("ssh"), "ssh", allow_hosts=True),
            docker_registry=docker.get("registry"),
            docker_username=docker.get("username"),
        )

    def _normalize_entries(self, entries: Any, section: str) -> List[Dict[str, Any]]:
        if entries is None:
            return []

        if isinstance(entries, list):
            normalized = entries
        elif isinstance(entries, dict):
            normalized = []
            for name, entry in entries.items():
                entry = dict(self._mapping(entry, f"{section}.{name}"))
                entry["name"] = str(name)
                normalized.append(entry)
        else:
            raise DeployError(f"`{section}` must be a mapping or a list.")

        seen = set()
        for entry in normalized:
            if not isinstance(entry, dict) or not entry.get("name"):
                raise DeployError(f"Every entry in `{section}` needs a `name`.")
            if entry["name"] in seen:
                raise DeployError(f"Duplicate entry `{entry['name']}` in `{section}`.")
            seen.add(entry["name"])
        return normalized

    def _parse_common(self, raw: Dict[str, Any], label: str) -> Dict[str, Any]:
        image = raw.get("image")
        if not image or not isinstance(image, str):
            raise DeployError(f"{label} is missing `image`.")

        servers = self._string_list(raw.get("servers"), f"{label}.servers")
        if not servers:
            raise DeployError(f"{label} needs at least one server in `servers`.")

        return {
            "name": str(raw["name"]),
            "image": image,
            "servers": servers,
            "ports": self._quoted_list(raw.get("ports"), f"{label}.ports"),
            "volumes": self._quoted_list(raw.get("volumes"), f"{label}.volumes"),
            "environment": self._parse_environment(raw.get("environment"), label),
            "registry": self._parse_registry(raw.get("registry"), label),
        }

    def _parse_app(self, raw: Dict[str, Any]) -> AppEntry:
        label = f"App `{raw['name']}`"
        self._reject_unknown(raw, self.APP_KEYS, label)
        return AppEntry(
            build=self._parse_build(raw.get("build"), label),
            proxy=self._parse_proxy(raw.get("proxy"), label),
            health_check=self._parse_health_check(raw.get("health_check"), label),
            **self._parse_common(raw, label),
        )

    def _parse_service(self, raw: Dict[str, Any]) -> ServiceEntry:
        label = f"Service `{raw['name']}`"
        self._reject_unknown(raw, self.SERVICE_KEYS, label)
        return ServiceEntry(**self._parse_common(raw, label))

    def _parse_ssh(self, raw: Any, label: str, allow_hosts: bool = False) -> SSHSettings:
        ssh = self._mapping(raw, label)
        self._reject_unknown(ssh, self.SSH_KEYS if allow_hosts else self.SSH_KEYS - {"hosts"}, label)

        hosts = ()
        if allow_hosts:
            hosts = tuple(
                (str(host), self._parse_ssh(settings, f"{label}.hosts.{host}"))
                for host, settings in self._mapping(ssh.get("hosts"), f"{label}.hosts").items()
            )

        return SSHSettings(
            username=ssh.get("username"),
            port=self._optional_int(ssh.get("port"), f"{label}.port"),
            key_file=ssh.get("key_file"),
            hosts=hosts,
        )

    def _parse_build(self, raw: Any, label: str) -> Optional[BuildSpec]:
        if raw is None:
            return None
        build = self._mapping(raw, f"{label}.build")
        self._reject_unknown(build, self.BUILD_KEYS, f"{label}.build")
        return BuildSpec(
            context=str(build.get("context", ".")),
            dockerfile=str(build.get("dockerfile", "Dockerfile")),
            args=self._pairs(build.get("args"), f"{label}.build.args"),
            platform=build.get("platform"),
            target=build.get("target"),
        )

    def _parse_proxy(self, raw: Any, label: str) -> Optional[ProxySpec]:
        if raw is None:
            return None
        proxy = self._mapping(raw, f"{label}.proxy")
        self._reject_unknown(proxy, self.PROXY_KEYS, f"{label}.proxy")
        return ProxySpec(
            hosts=self._string_list(proxy.get("hosts"), f"{label}.proxy.hosts"),
            app_port=self._optional_int(proxy.get("app_port"), f"{label}.proxy.app_port") or 80,
        )

    def _parse_health_check(self, raw: Any, label: str) -> Optional[HealthCheckSpec]:
        if raw is None:
            return None
        check = self._mapping(raw, f"{label}.health_check")
        self._reject_unknown(check, self.HEALTH_CHECK_KEYS, f"{label}.health_check")

        defaults = HealthCheckSpec()
        try:
            spec = HealthCheckSpec(
                path=check.get("path", defaults.path),
                port=self._optional_int(check.get("port"), f"{label}.health_check.port"),
                native=bool(check.get("native", defaults.native)),
                attempts=int(check.get("attempts", defaults.attempts)),
                interval_seconds=float(check.get("interval_seconds", defaults.interval_seconds)),
                success_threshold=int(check.get("success_threshold", defaults.success_threshold)),
                timeout_seconds=int(check.get("timeout_seconds", defaults.timeout_seconds)),
            )
        except (TypeError, ValueError) as exc:
            raise DeployError(f"Invalid {label}.health_check: {exc}") from exc

        if spec.attempts < 1 or spec.success_threshold < 1:
            raise DeployError(f"{label}.health_check attempts and success_threshold must be positive.")
        if spec.success_threshold > spec.attempts:
            raise DeployError(
                f"{label}.health_check success_threshold cannot exceed attempts "
                f"({spec.success_threshold} > {spec.attempts})."
            )
        return spec

    def _parse_registry(self, raw: Any, label: str) -> Optional[RegistrySpec]:
        if raw is None:
            return None
        registry = self._mapping(raw, f"{label}.registry")
        self._reject_unknown(registry, self.REGISTRY_KEYS, f"{label}.registry")
        if not registry.get("url"):
            raise DeployError(f"{label}.registry is missing `url`.")
        return RegistrySpec(
            url=str(registry["url"]),
            username=registry.get("username"),
            password_secret=registry.get("password_secret"),
        )

    def _parse_environment(self, raw: Any, label: str) -> EnvironmentSpec:
        environment = self._mapping(raw, f"{label}.environment")
        self._reject_unknown(environment, self.ENVIRONMENT_KEYS, f"{label}.environment")
        return EnvironmentSpec(
            plain=self._pairs(environment.get("plain"), f"{label}.environment.plain"),
            secret=self._string_list(environment.get("secret"), f"{label}.environment.secret"),
        )

    @staticmethod
    def _pairs(raw: Any, label: str) -> Tuple[Tuple[str, str], ...]:
        """Accepts ``{KEY: VALUE}`` or ``["KEY=VALUE", ...]``."""
        if raw is None:
            return ()
        if isinstance(raw, dict):
            return tuple((str(key), "" if value is None else str(value)) for key, value in raw.items())
        if isinstance(raw, list):
            pairs = []
            for item in raw:
                key, sep, value = str(item).partition("=")
                if not sep or not key:
                    raise DeployError(f"{label} entries must look like KEY=VALUE, got `{item}`.")
                pairs.append((key, value))
            return tuple(pairs)
        raise DeployError(f"{label} must be a mapping or a list of KEY=VALUE strings.")

    @staticmethod
    def _string_list(raw: Any, label: str) -> Tuple[str, ...]:
        if raw is None:
            return ()
        if not isinstance(raw, list):
            raise DeployError(f"{label} must be a list.")
        return tuple(str(item) for item in raw)

    @classmethod
    def _quoted_list(cls, raw: Any, label: str) -> Tuple[str, ...]:
        """Like ``_string_list`` but refuses values YAML already turned into numbers.

        An unquoted ``22:22`` loads as the base-60 integer 1342.
        """
        if isinstance(raw, list):
            for item in raw:
                if not isinstance(item, str):
                    raise DeployError(
                        f"{label} entries must be strings, got `{item}`. "
                        "Quote mappings such as \"22:22\" in the config file."
                    )
        return cls._string_list(raw, label)

    @staticmethod
    def _mapping(raw: Any, label: str) -> Dict[str, Any]:
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise DeployError(f"`{label}` must be a mapping.")
        return raw

    @staticmethod
    def _optional_int(raw: Any, label: str) -> Optional[int]:
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise DeployError(f"{label} must be an integer.") from exc

    @staticmethod
    def _reject_unknown(data: Dict[str, Any], supported, label: str):
        unknown = sorted(str(key) for key in set(data.keys()) - set(supported))
        if unknown:
            unknown_list = ", ".join(unknown)
            raise DeployError(f"Unknown keys in {label}: {unknown_list}")
