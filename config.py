# config.py
"""
This module defines the data structures for our configuration and the
loader that reads them from YAML.
"""

import yaml
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

REQUIRED_KEYS = ["team", "service", "environment", "location"]


@dataclass
class AzureResource:
    name: str
    type: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Config:
    team: str
    service: str
    environment: str
    location: str
    tags: Dict[str, str]
    azure_resources: List[AzureResource]
    outputs: Optional[Dict[str, Any]] = None

    def resource(self, name: str) -> Optional[AzureResource]:
        for resource in self.azure_resources:
            if resource.name == name:
                return resource
        return None

    def resources_of_type(self, resource_type: str) -> List[AzureResource]:
        return [r for r in self.azure_resources if r.type == resource_type]


def load_config(file_path: str) -> Dict[str, Any]:
    """Load and validate YAML configuration from the given file path."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file)

    if not isinstance(config_data, dict):
        raise ValueError(f"Configuration file '{file_path}' must contain a mapping")

    # Ensure required keys exist
    for key in REQUIRED_KEYS:
        if key not in config_data:
            raise ValueError(f"Missing required configuration key: {key}")

    return config_data


def parse_config(config_data: Dict[str, Any]) -> Config:
    """Convert a raw configuration mapping into the Config dataclass."""
    resources = []
    seen = set()
    for index, entry in enumerate(config_data.get("azure_resources") or []):
        if not entry.get("name") or not entry.get("type"):
            raise ValueError(f"Resource declaration #{index} needs both 'name' and 'type'")
        if entry["name"] in seen:
            raise ValueError(f"Duplicate resource declaration: {entry['name']}")
        seen.add(entry["name"])
        resources.append(AzureResource(entry["name"], entry["type"], dict(entry.get("args") or {})))

    return Config(
        team=config_data["team"],
        service=config_data["service"],
        environment=config_data["environment"],
        location=config_data["location"],
        tags=dict(config_data.get("tags") or {}),
        azure_resources=resources,
        outputs=config_data.get("outputs"),
    )


def _collect_secrets(value: Any, found: List[str]) -> None:
    if isinstance(value, dict):
        for item in value.values():
            _collect_secrets(item, found)
    elif isinstance(value, list):
        for item in value:
            _collect_secrets(item, found)
    elif isinstance(value, str) and value.startswith("secret:"):
        key = value[len("secret:"):]
        if key not in found:
            found.append(key)


def required_secrets(config: Config) -> List[str]:
    """Return every secret key referenced by the declarations, in first-seen order."""
    found: List[str] = []
    for resource in config.azure_resources:
        _collect_secrets(resource.args, found)
    return found
