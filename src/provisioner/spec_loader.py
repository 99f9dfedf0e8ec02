"""Descriptor file loading with validation.

SECURITY: File reads enforce a size limit and YAML is parsed with
safe_load only. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .config import MAX_DESCRIPTOR_FILE_SIZE_BYTES
from .descriptors import DeploymentDescriptor, NetworkChange

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class SpecLoadError(Exception):
    """Raised when descriptor loading or validation fails."""

    pass


def _read_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise SpecLoadError(f"Descriptor file not found: {path}")

    # SECURITY: Check file size before reading
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat descriptor file {path}: {e}") from e

    if file_size > MAX_DESCRIPTOR_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Descriptor file exceeds maximum size of {MAX_DESCRIPTOR_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read descriptor file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Descriptor file must contain a YAML mapping: {path}")

    # Both a flat document and an apiVersion/kind/spec wrapper are accepted
    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {path}")
        return spec_data
    return raw_data


def _validate(model: type[ModelT], data: dict[str, Any], path: Path) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e


def load_deployment_descriptor(path: Path) -> DeploymentDescriptor:
    """Load a virtual machine deployment descriptor from YAML.

    Raises:
        SpecLoadError: If the file cannot be read or fails validation.
    """
    desc = _validate(DeploymentDescriptor, _read_mapping(path), path)
    logger.info("Loaded deployment descriptor for role '%s' from %s", desc.role_name, path)
    return desc


def load_network_change(path: Path) -> NetworkChange:
    """Load a network topology change from YAML.

    Raises:
        SpecLoadError: If the file cannot be read or fails validation.
    """
    change = _validate(NetworkChange, _read_mapping(path), path)
    logger.info("Loaded network change for site '%s' from %s", change.site_name, path)
    return change
