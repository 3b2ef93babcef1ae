"""Device profile loading and validation for YAML-based command catalogs."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from devicelink.core.codec import hex_decode
from devicelink.core.errors import (
    ProfileLoadError,
    ProfileNotFoundError,
    ProfileValidationError,
    ProtocolError,
)
from devicelink.core.model import DeviceProfile, QuickCommand

_MAX_PAYLOAD_BYTES = 512
DEFAULT_PROFILE_ID = "raw"
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, DeviceProfile]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("devicelink.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "devicelink/profiles", xdg_data / "devicelink/profiles"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def _normalize_hex(value: str, *, context: str) -> bytes:
    try:
        payload = hex_decode(value)
    except ProtocolError as exc:
        raise ProfileValidationError(f"{context}: {exc}") from exc
    if len(payload) > _MAX_PAYLOAD_BYTES:
        raise ProfileValidationError(
            f"{context} exceeds max payload size {_MAX_PAYLOAD_BYTES} bytes"
        )
    return payload


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> DeviceProfile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    commands: list[QuickCommand] = []
    seen_labels: set[str] = set()
    for entry in doc.get("commands", []):
        label = entry["label"]
        if label in seen_labels:
            raise ProfileValidationError(f"{doc['id']}: duplicate command label '{label}'")
        seen_labels.add(label)
        context = f"{doc['id']}.{label}"
        is_hex = entry.get("hex", False)
        payload: str | bytes = entry["payload"]
        if is_hex:
            payload = _normalize_hex(entry["payload"], context=context)
        commands.append(QuickCommand(label=label, payload=payload, is_hex=is_hex))

    return DeviceProfile(
        id=doc["id"],
        name=doc["name"],
        line_ending=doc.get("line_ending", ""),
        commands=tuple(commands),
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("devicelink.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, DeviceProfile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))


class ProfileRegistry:
    """Read-only catalog of device profiles keyed by id."""

    def __init__(self, profiles: dict[str, DeviceProfile] | None = None) -> None:
        if profiles is None:
            loaded = load_profiles()
            profiles = loaded.profiles
            self.warnings = loaded.warnings
        else:
            self.warnings = ()
        self._profiles = dict(profiles)

    def __contains__(self, profile_id: object) -> bool:
        return profile_id in self._profiles

    def get(self, profile_id: str) -> DeviceProfile:
        profile = self._profiles.get(profile_id)
        if profile is None:
            available = ", ".join(sorted(self._profiles))
            raise ProfileNotFoundError(f"Unknown profile '{profile_id}'. Available: {available}")
        return profile

    def list(self) -> list[DeviceProfile]:
        return sorted(self._profiles.values(), key=lambda p: p.id)
