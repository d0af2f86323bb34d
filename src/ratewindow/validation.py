"""
Centralized validation for store and limiter configurations.

This module validates configuration parameters against the dataclass schemas
in ``ratewindow.schemas`` and turns every problem into a ConfigValidationError.
"""

import types
from dataclasses import MISSING, fields, is_dataclass
from typing import Any, Literal, Union, get_args, get_origin, get_type_hints

from ratewindow.exceptions import ConfigValidationError
from ratewindow.schemas import ENGINE_SCHEMAS, LimiterConfig

# Parameters that are passed to a store at construction time but are not part
# of its serializable configuration (live connections, clocks).
RUNTIME_PARAMS: dict[str, frozenset[str]] = {
    "memory": frozenset({"clock"}),
    "redis": frozenset(),
    "postgres": frozenset(),
    "nats": frozenset({"jetstream"}),
}


def _get_type_name(type_hint: Any) -> str:
    """Get a human-readable name for a type hint."""
    origin = get_origin(type_hint)

    if origin is None:
        return getattr(type_hint, "__name__", str(type_hint))

    if origin is Literal:
        return f"Literal{get_args(type_hint)}"

    if origin in (Union, types.UnionType):
        args = get_args(type_hint)
        names = [_get_type_name(arg) for arg in args if arg is not type(None)]
        suffix = " | None" if type(None) in args else ""
        return " | ".join(names) + suffix

    return str(type_hint)


def _matches(value: Any, expected_type: Any) -> bool:
    origin = get_origin(expected_type)

    if origin is Literal:
        return value in get_args(expected_type)

    if origin in (Union, types.UnionType):
        return any(_matches(value, arg) for arg in get_args(expected_type))

    if expected_type is type(None):
        return value is None

    # bool is an int subclass, but True is not a valid count
    if expected_type in (int, float) and isinstance(value, bool):
        return False

    # TOML writes whole numbers as integers
    if expected_type is float:
        return isinstance(value, (int, float))

    return isinstance(value, origin or expected_type)


def _validate_type(value: Any, expected_type: Any, field_name: str) -> None:
    """Validate that a value matches the expected type."""
    if _matches(value, expected_type):
        return

    if value is None:
        raise ConfigValidationError(
            f"Field '{field_name}' cannot be None",
            field=field_name,
            expected=_get_type_name(expected_type),
            received="None",
        )

    if get_origin(expected_type) is Literal:
        raise ConfigValidationError(
            f"Field '{field_name}' must be one of {get_args(expected_type)}",
            field=field_name,
            expected=_get_type_name(expected_type),
            received=repr(value),
        )

    raise ConfigValidationError(
        f"Field '{field_name}' has incorrect type",
        field=field_name,
        expected=_get_type_name(expected_type),
        received=type(value).__name__,
    )


def _build(config_class: type, params: dict[str, Any], context: str) -> Any:
    """Check required fields and types, then instantiate config_class."""
    hints = get_type_hints(config_class)
    config_fields = {f.name: f for f in fields(config_class)}

    for name in params:
        if name not in config_fields:
            available = ", ".join(config_fields)
            raise ConfigValidationError(
                f"Unknown field '{name}' for {context}. Available fields: {available}",
                field=name,
                expected=available,
                received=name,
            )

    for name, field_obj in config_fields.items():
        has_default = field_obj.default is not MISSING or field_obj.default_factory is not MISSING
        if not has_default and name not in params:
            raise ConfigValidationError(
                f"Missing required field '{name}' for {context}",
                field=name,
                expected="required",
                received="missing",
            )

    for name, value in params.items():
        _validate_type(value, hints[name], name)

    try:
        return config_class(**params)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"Invalid {context}: {e}") from e


def validate_store_config(engine: str, params: dict[str, Any]) -> Any:
    """Validate store configuration parameters and return config dataclass instance.

    Args:
        engine: Engine name ("memory", "redis", "postgres", "nats")
        params: Configuration parameters (without "engine" and runtime parameters)

    Returns:
        Config dataclass instance for the engine

    Raises:
        ConfigValidationError: If engine is unknown or parameters are invalid
    """
    if engine not in ENGINE_SCHEMAS:
        available = ", ".join(ENGINE_SCHEMAS.keys())
        raise ConfigValidationError(
            f"Unknown engine '{engine}'. Available engines: {available}",
            field="engine",
            expected=available,
            received=engine,
        )

    config_class = ENGINE_SCHEMAS[engine]
    if not is_dataclass(config_class):
        raise ConfigValidationError(
            f"Engine config class for '{engine}' is not a dataclass",
            field="engine",
            expected="dataclass",
            received=str(type(config_class)),
        )

    params = {k: v for k, v in params.items() if k != "engine"}
    return _build(config_class, params, f"engine '{engine}'")


def split_runtime_params(engine: str, params: dict[str, Any]) -> tuple[dict, dict]:
    """Separate runtime parameters (e.g. ``jetstream``) from configuration fields.

    Returns:
        Tuple of (config params, runtime params)
    """
    runtime_names = RUNTIME_PARAMS.get(engine, frozenset())
    config_params = {k: v for k, v in params.items() if k not in runtime_names}
    runtime_params = {k: v for k, v in params.items() if k in runtime_names}
    return config_params, runtime_params


def validate_limiter_config(config: dict[str, Any]) -> LimiterConfig:
    """Validate limiter configuration and return LimiterConfig instance.

    Args:
        config: Limiter configuration dictionary

    Returns:
        LimiterConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    return _build(LimiterConfig, config, "limiter config")
