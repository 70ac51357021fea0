"""Plugin manifest model and validator - describes a plugin's metadata and contract."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError, field_validator, model_validator

from harness.plugins import versioning

logger = logging.getLogger(__name__)

ExtensionPointName = Literal["commands", "agents", "hooks", "services", "templates"]
ConfigFieldType = Literal["string", "number", "boolean", "array", "object"]

# Error codes, in the order checks are reported
MISSING_FIELD = "MISSING_FIELD"
INVALID_TYPE = "INVALID_TYPE"
INVALID_VALUE = "INVALID_VALUE"
SCHEMA_ERROR = "SCHEMA_ERROR"

_CODE_ORDER = {MISSING_FIELD: 0, INVALID_TYPE: 1, INVALID_VALUE: 2, SCHEMA_ERROR: 3}

_VALUE_ERROR_TYPES = {
    "value_error",
    "literal_error",
    "enum",
    "string_too_short",
    "string_pattern_mismatch",
}


class PluginDependency(BaseModel):
    """Another plugin this plugin needs, with an acceptable version range."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: StrictStr = Field(..., min_length=1)
    version_range: StrictStr = Field(..., description="Version range of the dependency, e.g. '^1.0.0'")

    @field_validator("version_range")
    @classmethod
    def _check_range(cls, value: str) -> str:
        if not versioning.is_valid_range(value):
            raise ValueError(f"Must be a valid version range (e.g. >=1.0.0, ^1.0.0), got '{value}'")
        return value


class ConfigField(BaseModel):
    """A single typed field in a plugin's config_schema."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: ConfigFieldType
    description: StrictStr = ""
    default: Any = None
    required: Optional[StrictBool] = None

    @model_validator(mode="after")
    def _check_default(self):
        if self.required is None and "default" not in self.model_fields_set:
            raise ValueError("Config field without 'required' must declare a 'default'")
        return self


class PluginManifest(BaseModel):
    """Plugin manifest loaded from plugin.json."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: StrictStr = Field(..., min_length=1, pattern=r"^[^\s/]+$", description="Unique plugin name")
    version: StrictStr = Field(..., description="Plugin version (semantic version)")
    description: StrictStr = Field(..., description="Plugin description")
    author: StrictStr = Field(..., description="Plugin author")
    entry_point: StrictStr = Field(
        ...,
        min_length=1,
        description="Path relative to the plugin directory of a .py file or package exporting activate()",
    )
    host_version: StrictStr = Field(..., description="Version range of the host this plugin supports")
    extension_points: List[ExtensionPointName] = Field(..., description="Extension points this plugin uses")
    dependencies: List[PluginDependency] = Field(default_factory=list)
    config_schema: Optional[Dict[str, ConfigField]] = Field(
        default=None,
        description="Typed configuration fields with defaults",
    )

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not versioning.is_valid_semver(value):
            raise ValueError(f"Must be a valid semantic version (e.g. 1.0.0), got '{value}'")
        return value

    @field_validator("host_version")
    @classmethod
    def _check_host_version(cls, value: str) -> str:
        if not versioning.is_valid_range(value):
            raise ValueError(f"Must be a valid version range (e.g. >=1.0.0, ^1.0.0), got '{value}'")
        return value

    def config_defaults(self) -> Dict[str, Any]:
        """Defaults declared in config_schema."""
        if not self.config_schema:
            return {}
        return {
            key: schema_field.default
            for key, schema_field in self.config_schema.items()
            if "default" in schema_field.model_fields_set
        }

    def dependency_names(self) -> List[str]:
        return [dep.name for dep in self.dependencies]


class ManifestError(BaseModel):
    field: str
    message: str
    code: str


class ManifestValidationResult(BaseModel):
    valid: bool
    manifest: Optional[PluginManifest] = None
    errors: List[ManifestError] = Field(default_factory=list)

    def summary(self) -> str:
        return "; ".join(f"{e.field}: {e.message}" for e in self.errors)


class CompatibilityResult(BaseModel):
    compatible: bool
    required_range: str
    actual_version: str
    message: str


def _error_code(error_type: str) -> str:
    if error_type == "missing":
        return MISSING_FIELD
    if error_type in _VALUE_ERROR_TYPES:
        return INVALID_VALUE
    if error_type.endswith("_type") or error_type.endswith("_parsing"):
        return INVALID_TYPE
    return SCHEMA_ERROR


def _error_field(loc) -> str:
    if not loc:
        return "manifest"
    return ".".join(str(part) for part in loc)


def _clean_message(message: str) -> str:
    # pydantic prefixes custom ValueErrors
    return message.removeprefix("Value error, ")


class ManifestValidator:
    """Parses and schema-checks plugin manifests. Never raises."""

    def validate(self, raw: Any) -> ManifestValidationResult:
        """Validate already-parsed manifest data.

        Args:
            raw: Decoded plugin.json content

        Returns:
            ManifestValidationResult with errors ordered missing, type, value, schema
        """
        if not isinstance(raw, dict):
            return ManifestValidationResult(
                valid=False,
                errors=[ManifestError(field="manifest", message="Manifest must be a JSON object", code=SCHEMA_ERROR)],
            )

        try:
            manifest = PluginManifest.model_validate(raw)
        except ValidationError as e:
            errors = [
                ManifestError(
                    field=_error_field(err["loc"]),
                    message=_clean_message(err["msg"]),
                    code=_error_code(err["type"]),
                )
                for err in e.errors()
            ]
            errors.sort(key=lambda err: _CODE_ORDER[err.code])
            return ManifestValidationResult(valid=False, errors=errors)

        return ManifestValidationResult(valid=True, manifest=manifest)

    def validate_file(self, manifest_file: Union[str, Path]) -> ManifestValidationResult:
        """Read, decode and validate a plugin.json file."""
        manifest_file = Path(manifest_file)
        try:
            with open(manifest_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Invalid JSON in {manifest_file}: {e}")
            return ManifestValidationResult(
                valid=False,
                errors=[ManifestError(field="manifest", message=f"Invalid JSON in manifest file: {e}", code=SCHEMA_ERROR)],
            )
        except OSError as e:
            logger.error(f"Cannot read {manifest_file}: {e}")
            return ManifestValidationResult(
                valid=False,
                errors=[ManifestError(field="manifest", message=f"Failed to read manifest file: {manifest_file}", code=SCHEMA_ERROR)],
            )

        return self.validate(data)

    def check_compatibility(self, manifest: PluginManifest, host_version: str) -> CompatibilityResult:
        """Check the manifest's host_version range against the running host version."""
        required_range = manifest.host_version
        compatible = versioning.satisfies(host_version, required_range)
        if compatible:
            message = f"Host version {host_version} is compatible with required range {required_range}"
        else:
            message = f"Host version {host_version} does not satisfy required range {required_range}"
        return CompatibilityResult(
            compatible=compatible,
            required_range=required_range,
            actual_version=host_version,
            message=message,
        )
