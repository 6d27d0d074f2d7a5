"""
Configuration validation (``commerce_config.validator``).

Checks a parsed ``EngineConfig`` before the engine may use it:

* keyword families name known reasons, appear once each, and are listed in
  the fixed priority order defect_refund > discount > delivery;
* every family has at least one non-blank keyword;
* complexity thresholds and database settings are positive;
* every required message template is present, no unknown template is
  present, and templates only use the documented fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from string import Formatter

from commerce_config.schema import EngineConfig

KEYWORD_PRIORITY: tuple[str, ...] = ("defect_refund", "discount", "delivery")

REQUIRED_TEMPLATES: frozenset[str] = frozenset({
    "payment_claimed",
    "claim_reply",
    "claim_reply_with_reference",
    "payment_confirmed",
    "payment_rejected",
    "order_shipped",
    "order_delivered",
    "order_cancelled",
    "order_problem",
    "stock_conflict",
})

TEMPLATE_FIELDS: frozenset[str] = frozenset({
    "order_ref",
    "amount",
    "method",
    "reference",
    "reason",
    "product_name",
    "requested",
    "available",
    "address",
    "description",
})


class ConfigError(ValueError):
    """The configuration file failed validation."""

    code: str = "CONFIG_INVALID"

    def __init__(self, errors: list[str], source: str | None = None):
        self.errors = list(errors)
        self.source = source
        where = f" ({source})" if source else ""
        super().__init__(
            f"Configuration validation failed{where}:\n"
            + "\n".join(f"  - {e}" for e in self.errors)
        )


@dataclass
class ConfigValidationResult:
    """``is_valid`` is True only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: EngineConfig) -> ConfigValidationResult:
    result = ConfigValidationResult()

    _validate_keyword_families(config, result)
    _validate_complexity(config, result)
    _validate_templates(config, result)
    _validate_database(config, result)

    return result


def _validate_keyword_families(config: EngineConfig, result: ConfigValidationResult) -> None:
    families = config.escalation.keyword_families
    if not families:
        result.add_error("escalation.keyword_families must not be empty")
        return

    seen: list[str] = []
    for family in families:
        if family.reason not in KEYWORD_PRIORITY:
            result.add_error(
                f"Unknown keyword family reason {family.reason!r}; "
                f"expected one of {list(KEYWORD_PRIORITY)}"
            )
            continue
        if family.reason in seen:
            result.add_error(f"Duplicate keyword family {family.reason!r}")
            continue
        seen.append(family.reason)
        if not any(k.strip() for k in family.keywords):
            result.add_error(f"Keyword family {family.reason!r} has no keywords")

    expected = [r for r in KEYWORD_PRIORITY if r in seen]
    if seen != expected:
        result.add_error(
            f"Keyword families must be listed in priority order {expected}, "
            f"got {seen}"
        )
    for reason in KEYWORD_PRIORITY:
        if reason not in seen:
            result.add_warning(f"No keyword family for {reason!r}")


def _validate_complexity(config: EngineConfig, result: ConfigValidationResult) -> None:
    rule = config.escalation.complexity
    if rule.max_length <= 0:
        result.add_error("complexity.max_length must be positive")
    if rule.max_question_marks < 0:
        result.add_error("complexity.max_question_marks must not be negative")


def _validate_templates(config: EngineConfig, result: ConfigValidationResult) -> None:
    templates = config.messages.templates
    for name in sorted(REQUIRED_TEMPLATES - set(templates)):
        result.add_error(f"Missing message template {name!r}")
    for name in sorted(set(templates) - REQUIRED_TEMPLATES):
        result.add_error(f"Unknown message template {name!r}")
    for name, text in templates.items():
        try:
            names = {f for _, f, _, _ in Formatter().parse(text) if f}
        except ValueError as exc:
            result.add_error(f"Template {name!r} is malformed: {exc}")
            continue
        unknown = names - TEMPLATE_FIELDS
        if unknown:
            result.add_error(
                f"Template {name!r} uses unknown fields {sorted(unknown)}"
            )


def _validate_database(config: EngineConfig, result: ConfigValidationResult) -> None:
    db = config.database
    if db.pool_size <= 0:
        result.add_error("database.pool_size must be positive")
    if db.max_overflow < 0:
        result.add_error("database.max_overflow must not be negative")
    if db.pool_timeout <= 0:
        result.add_error("database.pool_timeout must be positive")
    if db.sqlite_busy_timeout <= 0:
        result.add_error("database.sqlite_busy_timeout must be positive")
    if db.max_transient_retries < 0:
        result.add_error("database.max_transient_retries must not be negative")
