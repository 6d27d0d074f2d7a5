"""
commerce_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files.
    Returns a frozen, validated ``EngineConfig``.

Architecture position:
    Configuration -- sits above ``commerce_kernel``.  The kernel MUST NEVER
    import from ``commerce_config``; ``commerce_config.bridges`` translates
    the config into kernel value objects (EscalationRules, MessageCatalog,
    WorkflowSettings).

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - A configuration that fails validation is never returned.
    - Same file, same checksum.

Audit relevance:
    Every successful call emits a ``commerce_config_loaded`` log entry with
    the config id, version and checksum, tying escalation behaviour to the
    exact file that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from commerce_config.loader import load_yaml_file, parse_engine_config
from commerce_config.schema import (
    ComplexityRule,
    DatabaseSettings,
    EngineConfig,
    EscalationConfig,
    KeywordFamily,
    MessageTemplates,
)
from commerce_config.validator import ConfigError, validate_configuration

_logger = logging.getLogger("commerce_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "engine.yaml"


def get_active_config(config_path: Path | str | None = None) -> EngineConfig:
    """
    The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to the packaged
            ``commerce_config/defaults/engine.yaml``.

    Raises:
        FileNotFoundError: the file does not exist.
        ConfigError: the file parsed but failed validation, or a required
            key is missing or has the wrong type.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)

    try:
        config = parse_engine_config(data)
    except (KeyError, ValueError, TypeError) as exc:
        raise ConfigError([f"cannot parse: {exc!r}"], source=str(path)) from exc

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ConfigError(validation.errors, source=str(path))
    for warning in validation.warnings:
        _logger.warning("commerce_config_warning", extra={"detail": warning})

    _logger.info(
        "commerce_config_loaded",
        extra={
            "trace_type": "COMMERCE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
            "keyword_family_count": len(config.escalation.keyword_families),
            "auto_escalation_enabled": config.escalation.auto_escalation_enabled,
        },
    )
    return config


__all__ = [
    "ComplexityRule",
    "ConfigError",
    "DatabaseSettings",
    "DEFAULT_CONFIG_PATH",
    "EngineConfig",
    "EscalationConfig",
    "KeywordFamily",
    "MessageTemplates",
    "get_active_config",
]
