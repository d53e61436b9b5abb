"""Resolution of deployer-wide defaults and request-scoped deployment properties."""

import logging
import re
from typing import Iterable, Optional

import yaml
from pydantic import BaseModel, ValidationError

from .config import DeployerSettings
from .errors import ConfigurationError
from .models import (
    DeploymentRequest,
    EntryPointStyle,
    ProbeSpec,
    ResolvedSpec,
    VolumeClaimTemplateSpec,
    VolumeMountSpec,
    VolumeSpec,
)

logger = logging.getLogger(__name__)

PROPERTY_PREFIX = "deployer.kubernetes."
GROUP_PROPERTY_KEY = "deployer.group"
COUNT_PROPERTY_KEY = "deployer.count"
INDEXED_PROPERTY_KEY = "deployer.indexed"
SERVER_PORT_KEY = "server.port"

_QUOTES = ("'", '"')
_DELIMITERS = (":", "=")

_SIZE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)([kmgtpe]?)(i?)b?$", re.IGNORECASE)
_BINARY_UNITS = {"k": "Ki", "m": "Mi", "g": "Gi", "t": "Ti", "p": "Pi", "e": "Ei"}

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


def _split_top_level(text: str, option: str) -> list[str]:
    """Split on commas that are not inside a quoted section."""
    tokens: list[str] = []
    current: list[str] = []
    quote: Optional[str] = None

    for char in text:
        if quote:
            if char == quote:
                quote = None
        elif char in _QUOTES:
            quote = char
        elif char == ",":
            tokens.append("".join(current))
            current = []
            continue
        current.append(char)

    if quote:
        raise ConfigurationError(f"Unbalanced quote in '{option}': {text}")
    tokens.append("".join(current))
    return tokens


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
        return value[1:-1]
    return value


def _split_pair(token: str, option: str) -> tuple[str, str]:
    quote: Optional[str] = None
    for index, char in enumerate(token):
        if quote:
            if char == quote:
                quote = None
        elif char in _QUOTES:
            quote = char
        elif char in _DELIMITERS:
            key = _unquote(token[:index])
            if not key:
                raise ConfigurationError(f"Missing key in '{option}' entry: {token.strip()}")
            return key, _unquote(token[index + 1 :])
    raise ConfigurationError(
        f"Invalid '{option}' entry '{token.strip()}', expected key:value or key=value"
    )


def parse_key_value_pairs(text: Optional[str], option: str = "value") -> dict[str, str]:
    """
    Parse a compact list of key/value pairs.

    Pairs are separated by commas and use either ``:`` or ``=`` between key
    and value. Quoting a key or value with single or double quotes keeps
    commas and delimiters inside it, e.g. ``foo='bar,baz',car=caz``.

    Args:
        text: Text to parse; None or blank yields an empty mapping
        option: Option name used in error messages

    Returns:
        Ordered mapping of keys to values

    Raises:
        ConfigurationError: On unbalanced quotes or a malformed pair
    """
    if text is None or not text.strip():
        return {}

    pairs: dict[str, str] = {}
    for token in _split_top_level(text, option):
        if not token.strip():
            continue
        key, value = _split_pair(token, option)
        pairs[key] = value
    return pairs


def _reads_back(text: str, stops: str) -> bool:
    """True when quotes in text balance and no stop character is outside a quote."""
    quote: Optional[str] = None
    for char in text:
        if quote:
            if char == quote:
                quote = None
        elif char in _QUOTES:
            quote = char
        elif char in stops:
            return False
    return quote is None


def _serialize(text: str, stops: str) -> str:
    for candidate in (text, f"'{text}'", f'"{text}"'):
        if _unquote(candidate) == text and _reads_back(candidate, stops):
            return candidate
    raise ConfigurationError(f"Cannot serialize {text!r} so that it parses back unchanged")


def format_key_value_pairs(pairs: dict[str, str]) -> str:
    """
    Serialize a mapping so that parse_key_value_pairs reads it back unchanged.

    Keys and values are written bare when they survive parsing as they are,
    otherwise wrapped in single quotes, otherwise in double quotes.

    Raises:
        ConfigurationError: If an entry cannot be written in any of those forms
    """
    return ",".join(
        f"{_serialize(key, ',:=')}={_serialize(value, ',')}" for key, value in pairs.items()
    )


def normalize_storage_size(size: str, option: str = "storage") -> str:
    """
    Normalize a size to a Kubernetes binary quantity.

    Decimal suffixes are read as their binary counterparts, so ``1g`` and
    ``1G`` become ``1Gi`` and ``10m`` becomes ``10Mi``. Sizes already in
    binary units are returned unchanged and bare numbers are bytes.

    Raises:
        ConfigurationError: If the size cannot be parsed
    """
    match = _SIZE_PATTERN.match(size.strip()) if size else None
    if not match:
        raise ConfigurationError(f"Invalid size '{size}' for '{option}'")

    amount, unit, _ = match.groups()
    if not unit:
        if "." in amount:
            raise ConfigurationError(f"Fractional byte count '{size}' for '{option}'")
        return amount
    return f"{amount}{_BINARY_UNITS[unit.lower()]}"


def _load_records(text: str, option: str) -> list[dict]:
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid '{option}' value: {e}") from e

    if loaded is None:
        return []
    if isinstance(loaded, dict):
        loaded = [loaded]
    if not isinstance(loaded, list) or not all(isinstance(r, dict) for r in loaded):
        raise ConfigurationError(f"'{option}' must be a list of records, got: {text}")
    return loaded


def parse_volumes(text: Optional[str], option: str = "volumes") -> list[VolumeSpec]:
    """Parse a YAML flow list of volume records."""
    if text is None or not text.strip():
        return []
    try:
        return [VolumeSpec.model_validate(r) for r in _load_records(text, option)]
    except ValidationError as e:
        raise ConfigurationError(f"Invalid '{option}' value: {e}") from e


def parse_volume_mounts(text: Optional[str], option: str = "volumeMounts") -> list[VolumeMountSpec]:
    """Parse a YAML flow list of volume mount records."""
    if text is None or not text.strip():
        return []
    try:
        return [VolumeMountSpec.model_validate(r) for r in _load_records(text, option)]
    except ValidationError as e:
        raise ConfigurationError(f"Invalid '{option}' value: {e}") from e


def merge_by_name(defaults: Iterable[BaseModel], overrides: Iterable[BaseModel]) -> list:
    """Replace default records with same-named overrides; new names are appended."""
    merged = {record.name: record for record in defaults}
    for record in overrides:
        merged[record.name] = record
    return list(merged.values())


def select_mounted_volumes(
    volumes: Iterable[VolumeSpec], mounts: Iterable[VolumeMountSpec]
) -> list[VolumeSpec]:
    """Keep only the volumes referenced by a mount."""
    mount_names = {mount.name for mount in mounts}
    selected = []
    for volume in volumes:
        if volume.name in mount_names:
            selected.append(volume)
        else:
            logger.debug(f"Dropping volume {volume.name}: no volume mount references it")
    return selected


def parse_bool(value: str, option: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    raise ConfigurationError(f"Invalid boolean '{value}' for '{option}'")


def parse_int(value: str, option: str, minimum: Optional[int] = None) -> int:
    try:
        number = int(value.strip())
    except ValueError as e:
        raise ConfigurationError(f"Invalid integer '{value}' for '{option}'") from e
    if minimum is not None and number < minimum:
        raise ConfigurationError(f"'{option}' must be at least {minimum}, got {number}")
    return number


class PropertyResolver:
    """
    Merges deployer-wide defaults with request-scoped properties.

    For every option the request key (``deployer.kubernetes.<option>``) wins,
    then the deployer-wide setting, then the built-in default carried by
    DeployerSettings.
    """

    def __init__(self, settings: DeployerSettings, prefix: str = PROPERTY_PREFIX):
        """
        Initialize the resolver.

        Args:
            settings: Deployer-wide defaults
            prefix: Prefix of request-scoped option keys
        """
        self.settings = settings
        self.prefix = prefix

    def get(self, properties: dict[str, str], option: str, *aliases: str) -> Optional[str]:
        """Return the request-scoped value of an option, or None when absent or blank."""
        for name in (option, *aliases):
            value = properties.get(f"{self.prefix}{name}")
            if value is not None and value.strip():
                return value.strip()
        return None

    def _int(self, properties: dict[str, str], option: str, default: int, minimum: int = 0) -> int:
        value = self.get(properties, option)
        if value is None:
            return default
        return parse_int(value, option, minimum)

    def _bool(self, properties: dict[str, str], option: str, default: bool) -> bool:
        value = self.get(properties, option)
        if value is None:
            return default
        return parse_bool(value, option)

    def _str(self, properties: dict[str, str], option: str, default: Optional[str]) -> Optional[str]:
        value = self.get(properties, option)
        return value if value is not None else default

    def _pairs(self, properties: dict[str, str], option: str, default: Optional[str], *aliases: str) -> dict[str, str]:
        value = self.get(properties, option, *aliases)
        return parse_key_value_pairs(value if value is not None else default, option)

    def resolve_environment(self, properties: dict[str, str]) -> dict[str, str]:
        """Deployer-wide entries overlaid by the request's entries, per key."""
        environment: dict[str, str] = {}
        for entry in self.settings.environment_variables:
            environment.update(parse_key_value_pairs(entry, "environmentVariables"))
        environment.update(
            parse_key_value_pairs(
                self.get(properties, "environmentVariables"), "environmentVariables"
            )
        )
        return environment

    def resolve_volumes(
        self, properties: dict[str, str]
    ) -> tuple[list[VolumeSpec], list[VolumeMountSpec]]:
        mounts = merge_by_name(
            self.settings.volume_mounts,
            parse_volume_mounts(self.get(properties, "volumeMounts")),
        )
        volumes = merge_by_name(
            self.settings.volumes,
            parse_volumes(self.get(properties, "volumes")),
        )
        return select_mounted_volumes(volumes, mounts), mounts

    def resolve_claim_template(self, properties: dict[str, str]) -> VolumeClaimTemplateSpec:
        defaults = self.settings.stateful_set.volume_claim_template
        storage = self._str(properties, "statefulSet.volumeClaimTemplate.storage", defaults.storage)
        return VolumeClaimTemplateSpec(
            storage=normalize_storage_size(storage, "statefulSet.volumeClaimTemplate.storage"),
            storage_class_name=self._str(
                properties,
                "statefulSet.volumeClaimTemplate.storageClassName",
                defaults.storage_class_name,
            ),
            mount_path=defaults.mount_path,
        )

    def resolve_port(self, request: DeploymentRequest) -> int:
        value = request.app_properties.get(SERVER_PORT_KEY)
        if value is None:
            return self.settings.default_port
        return parse_int(value, SERVER_PORT_KEY, minimum=1)

    def resolve_entry_point_style(self, properties: dict[str, str]) -> EntryPointStyle:
        value = self.get(properties, "entryPointStyle")
        if value is None:
            return self.settings.entry_point_style
        try:
            return EntryPointStyle(value.lower())
        except ValueError as e:
            raise ConfigurationError(f"Invalid entry point style '{value}'") from e

    def resolve(self, request: DeploymentRequest) -> ResolvedSpec:
        """
        Resolve the effective options for a request.

        Args:
            request: Deployment request

        Returns:
            Immutable ResolvedSpec

        Raises:
            ConfigurationError: If any option is malformed
        """
        props = request.deployment_properties
        s = self.settings

        count_value = props.get(COUNT_PROPERTY_KEY)
        count = parse_int(count_value, COUNT_PROPERTY_KEY, minimum=1) if count_value else 1
        indexed_value = props.get(INDEXED_PROPERTY_KEY)
        indexed = parse_bool(indexed_value, INDEXED_PROPERTY_KEY) if indexed_value else False
        group = (props.get(GROUP_PROPERTY_KEY) or "").strip() or None

        volumes, mounts = self.resolve_volumes(props)

        try:
            spec = ResolvedSpec(
                namespace=s.namespace,
                group=group,
                count=count,
                indexed=indexed,
                environment_variables=self.resolve_environment(props),
                volumes=tuple(volumes),
                volume_mounts=tuple(mounts),
                node_selector=self._pairs(props, "nodeSelector", s.node_selector, "deployment.nodeSelector"),
                pod_annotations=self._pairs(props, "podAnnotations", s.pod_annotations),
                service_annotations=self._pairs(props, "serviceAnnotations", s.service_annotations),
                image_pull_secret=self._str(props, "imagePullSecret", s.image_pull_secret),
                image_pull_policy=self._str(props, "imagePullPolicy", s.image_pull_policy),
                service_account_name=self._str(
                    props, "deploymentServiceAccountName", s.deployment_service_account_name
                ),
                memory=normalize_storage_size(self._str(props, "memory", s.memory), "memory"),
                cpu=self._str(props, "cpu", s.cpu),
                liveness_probe=ProbeSpec(
                    path=self._str(props, "livenessProbePath", s.liveness_probe_path),
                    initial_delay=self._int(props, "livenessProbeDelay", s.liveness_probe_delay),
                    period=self._int(props, "livenessProbePeriod", s.liveness_probe_period, minimum=1),
                    timeout=self._int(props, "livenessProbeTimeout", s.liveness_probe_timeout, minimum=1),
                ),
                readiness_probe=ProbeSpec(
                    path=self._str(props, "readinessProbePath", s.readiness_probe_path),
                    initial_delay=self._int(props, "readinessProbeDelay", s.readiness_probe_delay),
                    period=self._int(props, "readinessProbePeriod", s.readiness_probe_period, minimum=1),
                    timeout=self._int(props, "readinessProbeTimeout", s.readiness_probe_timeout, minimum=1),
                ),
                container_port=self.resolve_port(request),
                entry_point_style=self.resolve_entry_point_style(props),
                host_network=self._bool(props, "hostNetwork", s.host_network),
                create_load_balancer=self._bool(props, "createLoadBalancer", s.create_load_balancer),
                minutes_to_wait_for_load_balancer=self._int(
                    props, "minutesToWaitForLoadBalancer", s.minutes_to_wait_for_load_balancer
                ),
                max_terminated_error_restarts=self._int(
                    props, "maxTerminatedErrorRestarts", s.max_terminated_error_restarts
                ),
                max_crash_loop_back_off_restarts=self._int(
                    props, "maxCrashLoopBackOffRestarts", s.max_crash_loop_back_off_restarts
                ),
                volume_claim_template=self.resolve_claim_template(props),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid deployment properties for {request.name}: {e}") from e

        logger.debug(f"Resolved deployment properties for {request.name}: {spec}")
        return spec
