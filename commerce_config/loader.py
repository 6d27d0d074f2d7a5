"""
Configuration Loader (``commerce_config.loader``).

Responsibility
--------------
Loads the engine YAML file and parses it into ``commerce_config.schema``
dataclasses.  Internal tooling: runtime callers go through
``commerce_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrong value types  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from commerce_config.schema import (
    ComplexityRule,
    DatabaseSettings,
    EngineConfig,
    EscalationConfig,
    KeywordFamily,
    MessageTemplates,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields ``{}``."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def parse_keyword_family(data: dict[str, Any]) -> KeywordFamily:
    keywords = data["keywords"]
    if not isinstance(keywords, list):
        raise ValueError(
            f"Keyword family {data.get('reason')!r}: keywords must be a list"
        )
    return KeywordFamily(
        reason=str(data["reason"]),
        keywords=tuple(str(k) for k in keywords),
    )


def parse_complexity(data: dict[str, Any] | None) -> ComplexityRule:
    if not data:
        return ComplexityRule()
    return ComplexityRule(
        max_length=int(data.get("max_length", ComplexityRule.max_length)),
        max_question_marks=int(
            data.get("max_question_marks", ComplexityRule.max_question_marks)
        ),
    )


def parse_escalation(data: dict[str, Any]) -> EscalationConfig:
    families = data["keyword_families"]
    if not isinstance(families, list):
        raise ValueError("escalation.keyword_families must be a list")
    return EscalationConfig(
        keyword_families=tuple(parse_keyword_family(f) for f in families),
        complexity=parse_complexity(data.get("complexity")),
        auto_escalation_enabled=bool(data.get("auto_escalation_enabled", True)),
        resolve_on_payment_confirmed=bool(
            data.get("resolve_on_payment_confirmed", False)
        ),
    )


def parse_messages(data: dict[str, Any] | None) -> MessageTemplates:
    if data is None:
        return MessageTemplates()
    if not isinstance(data, dict):
        raise ValueError("messages must be a mapping of template name to text")
    return MessageTemplates(templates={str(k): str(v) for k, v in data.items()})


def parse_database(data: dict[str, Any] | None) -> DatabaseSettings:
    if not data:
        return DatabaseSettings()
    defaults = DatabaseSettings()
    return DatabaseSettings(
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
        pool_timeout=int(data.get("pool_timeout", defaults.pool_timeout)),
        pool_recycle=int(data.get("pool_recycle", defaults.pool_recycle)),
        sqlite_busy_timeout=float(
            data.get("sqlite_busy_timeout", defaults.sqlite_busy_timeout)
        ),
        max_transient_retries=int(
            data.get("max_transient_retries", defaults.max_transient_retries)
        ),
    )


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """Parse a whole engine file.  The checksum is computed over ``data``."""
    return EngineConfig(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        escalation=parse_escalation(data["escalation"]),
        messages=parse_messages(data.get("messages")),
        database=parse_database(data.get("database")),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
