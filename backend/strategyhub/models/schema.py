"""Schema-driven validation shared by config.yaml and per-wallet strategy configs."""

from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    path: str
    message: str



_TYPE_MAP = {
    "str": str,
    "int": int,
    "float": (int, float),
    "bool": bool,
    "list": list,
    "dict": dict,
}


def validate_against_schema(
    data: Dict[str, Any],
    schema: Dict[str, Any],
    path: str = "",
) -> List[ConfigValidationError]:
    """Validate a dictionary against schema.

    Unknown keys are errors. Used both for the YAML file and for
    per-wallet strategy configs.

    Args:
        data: Data to validate
        schema: Schema to validate against
        path: Current path for error messages

    Returns:
        List of validation errors
    """
    errors = []

    # Check for unknown keys
    for key in data:
        if key not in schema:
            errors.append(ConfigValidationError(
                path=f"{path}.{key}" if path else key,
                message=f"Unknown configuration key '{key}'"
            ))

    # Validate each schema property
    for key, prop_schema in schema.items():
        current_path = f"{path}.{key}" if path else key

        if key not in data:
            if prop_schema.get("required", False):
                errors.append(ConfigValidationError(
                    path=current_path,
                    message="Required field missing"
                ))
            continue

        errors.extend(_validate_value(data[key], prop_schema, current_path))

    return errors


def _validate_value(
    value: Any,
    schema: Dict[str, Any],
    path: str
) -> List[ConfigValidationError]:
    """Validate a single value against schema."""
    errors = []
    expected_type = schema.get("type")

    if expected_type == "dict":
        if not isinstance(value, dict):
            errors.append(ConfigValidationError(
                path=path,
                message=f"Expected dict, got {type(value).__name__}"
            ))
            return errors

        # Validate nested properties
        if "properties" in schema:
            errors.extend(validate_against_schema(value, schema["properties"], path))

    elif expected_type in _TYPE_MAP:
        expected = _TYPE_MAP[expected_type]
        # bool is an int subclass; never accept it for numeric fields
        is_numeric = expected_type in ("int", "float")
        if not isinstance(value, expected) or (is_numeric and isinstance(value, bool)):
            errors.append(ConfigValidationError(
                path=path,
                message=f"Expected {expected_type}, got {type(value).__name__}"
            ))
            return errors

        # Numeric range validation
        if is_numeric:
            if "min" in schema and value < schema["min"]:
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Value {value} is below minimum {schema['min']}"
                ))
            if "exclusive_min" in schema and value <= schema["exclusive_min"]:
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Value {value} must be greater than {schema['exclusive_min']}"
                ))
            if "max" in schema and value > schema["max"]:
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Value {value} is above maximum {schema['max']}"
                ))

        # Options validation
        if "options" in schema and value not in schema["options"]:
            errors.append(ConfigValidationError(
                path=path,
                message=f"Value '{value}' not in allowed options: {schema['options']}"
            ))

    return errors

