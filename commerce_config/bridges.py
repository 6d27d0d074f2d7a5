"""
Config -> Kernel Bridges.

Functions that convert an ``EngineConfig`` into kernel inputs.  They live in
commerce_config (the producer) because the kernel must never import
commerce_config.

Usage:
    config = get_active_config()
    settings = build_workflow_settings(config)
    init_engine_from_url(url, **engine_options(config))
"""

from __future__ import annotations

from typing import Any

from commerce_config.schema import EngineConfig
from commerce_kernel.domain.classifier import ComplexityRule as KernelComplexityRule
from commerce_kernel.domain.classifier import EscalationRules, KeywordRule
from commerce_kernel.domain.replies import MessageCatalog
from commerce_kernel.domain.values import EscalationReason
from commerce_kernel.services.workflow_orchestrator import WorkflowSettings


def build_escalation_rules(config: EngineConfig) -> EscalationRules:
    escalation = config.escalation
    return EscalationRules(
        keyword_rules=tuple(
            KeywordRule(
                reason=EscalationReason(family.reason),
                keywords=family.keywords,
            )
            for family in escalation.keyword_families
        ),
        complexity=KernelComplexityRule(
            max_length=escalation.complexity.max_length,
            max_question_marks=escalation.complexity.max_question_marks,
        ),
    )


def build_message_catalog(config: EngineConfig) -> MessageCatalog:
    """Configured wording; templates absent from the file keep the defaults."""
    known = set(MessageCatalog.keys())
    overrides = {
        name: text
        for name, text in config.messages.templates.items()
        if name in known
    }
    return MessageCatalog(**overrides)


def build_workflow_settings(config: EngineConfig) -> WorkflowSettings:
    return WorkflowSettings(
        rules=build_escalation_rules(config),
        messages=build_message_catalog(config),
        auto_escalate=config.escalation.auto_escalation_enabled,
        resolve_on_confirm=config.escalation.resolve_on_payment_confirmed,
        max_transient_retries=config.database.max_transient_retries,
    )


def engine_options(config: EngineConfig) -> dict[str, Any]:
    """Keyword arguments for ``commerce_kernel.db.engine.init_engine_from_url``."""
    db = config.database
    return {
        "pool_size": db.pool_size,
        "max_overflow": db.max_overflow,
        "pool_timeout": db.pool_timeout,
        "pool_recycle": db.pool_recycle,
        "sqlite_busy_timeout": db.sqlite_busy_timeout,
    }
