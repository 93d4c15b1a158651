import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

COMPOSE_FILENAMES = ("docker-compose.yml", "docker-compose.yaml")

# Regex to match ${VAR:-default} or ${VAR}
INTERPOLATION_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')

def interpolate_value(value: str) -> str:
    """
    Interpolates environment variables in a string.
    Supports ${VAR} and ${VAR:-default}.
    """
    if not isinstance(value, str):
        return value

    def replace_match(match):
        var_name = match.group(1)
        default_value = match.group(2)
        env_val = os.getenv(var_name)
        if env_val is not None:
            return env_val
        return default_value if default_value is not None else ""

    return INTERPOLATION_PATTERN.sub(replace_match, value)

def interpolate_dict(data: Any) -> Any:
    """Recursively interpolates strings in a dictionary or list."""
    if isinstance(data, dict):
        return {k: interpolate_dict(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [interpolate_dict(v) for v in data]
    elif isinstance(data, str):
        return interpolate_value(data)
    else:
        return data

def find_compose_file(cwd: Path) -> Optional[Path]:
    """Return the first multi-service descriptor present in *cwd*, if any."""
    for name in COMPOSE_FILENAMES:
        candidate = cwd / name
        if candidate.is_file():
            return candidate
    return None

def load_docker_compose_config(compose_path: Path) -> Dict[str, Any]:
    """
    Parses a compose file using PyYAML and interpolates variables.
    Returns the parsed configuration dictionary.
    """
    if not compose_path.exists():
        raise FileNotFoundError(f"{compose_path.name} not found in {compose_path.parent}")

    try:
        with open(compose_path, "r") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RuntimeError(f"Failed to parse {compose_path.name}: {e}") from e

    return interpolate_dict(raw_config)

def list_services(compose_config: Any) -> list[str]:
    """Service names, or an empty list when the document has no services mapping."""
    if not isinstance(compose_config, dict):
        return []
    services = compose_config.get("services")
    if not isinstance(services, dict):
        return []
    return [str(name) for name in services.keys()]

def get_ports(service_config: Dict[str, Any]) -> list:
    """Get the exposed ports for a service."""
    # PyYAML parses "80:80" as string usually, but "80" might be int.
    # We normalize to a list of raw values (strings or ints or dicts if long syntax).
    ports = service_config.get("ports", [])
    if ports is None:
        return []
    return ports

def _published_port(entry: Any) -> Optional[int]:
    if isinstance(entry, dict):
        published = entry.get("published")
        try:
            return int(str(published)) if published is not None else None
        except ValueError:
            return None

    text = str(entry).strip()
    if not text:
        return None
    # Short syntax: [ip:]host:container[/proto]; a bare container port publishes nothing fixed.
    text = text.split("/", 1)[0]
    parts = text.split(":")
    if len(parts) < 2:
        return None
    try:
        return int(parts[-2])
    except ValueError:
        return None

def published_ports(compose_config: Dict[str, Any]) -> list[int]:
    """Host ports published by any service, sorted and de-duplicated."""
    out: set[int] = set()
    for name in list_services(compose_config):
        service = compose_config["services"][name]
        if not isinstance(service, dict):
            continue
        for entry in get_ports(service):
            port = _published_port(entry)
            if port is not None:
                out.add(port)
    return sorted(out)
