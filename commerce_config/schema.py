"""
Configuration schema (``commerce_config.schema``).

Frozen dataclasses produced by ``commerce_config.loader`` from the engine
YAML.  Pure data; no I/O and no kernel imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class KeywordFamily:
    """Keywords that escalate a conversation with ``reason``."""

    reason: str
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class ComplexityRule:
    """Messages longer than ``max_length`` or with more than
    ``max_question_marks`` question marks escalate as complexity."""

    max_length: int = 200
    max_question_marks: int = 2


@dataclass(frozen=True)
class EscalationConfig:
    # Families in evaluation (priority) order
    keyword_families: tuple[KeywordFamily, ...]
    complexity: ComplexityRule = field(default_factory=ComplexityRule)
    auto_escalation_enabled: bool = True
    resolve_on_payment_confirmed: bool = False


@dataclass(frozen=True)
class MessageTemplates:
    """Merchant-facing wording, keyed by template name."""

    templates: dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> str | None:
        return self.templates.get(key)


@dataclass(frozen=True)
class DatabaseSettings:
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    sqlite_busy_timeout: float = 30.0
    max_transient_retries: int = 3


@dataclass(frozen=True)
class EngineConfig:
    """The complete, validated engine configuration."""

    config_id: str
    version: int
    escalation: EscalationConfig
    messages: MessageTemplates
    database: DatabaseSettings
    checksum: str = ""
