"""
Tests for commerce_config: loading, validation and the kernel bridges.
"""

import logging

import pytest
import yaml

from commerce_config import DEFAULT_CONFIG_PATH, ConfigError, get_active_config
from commerce_config.bridges import (
    build_escalation_rules,
    build_message_catalog,
    build_workflow_settings,
    engine_options,
)
from commerce_config.loader import compute_checksum, load_yaml_file
from commerce_config.validator import REQUIRED_TEMPLATES
from commerce_kernel.domain.replies import MessageCatalog
from commerce_kernel.domain.values import EscalationReason


def _default_data() -> dict:
    return load_yaml_file(DEFAULT_CONFIG_PATH)


def _write(tmp_path, data: dict):
    path = tmp_path / "engine.yaml"
    path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")
    return path


class TestDefaultConfig:

    def test_loads_and_validates(self):
        config = get_active_config()
        assert config.config_id == "default"
        assert [f.reason for f in config.escalation.keyword_families] == [
            "defect_refund", "discount", "delivery",
        ]
        assert config.escalation.complexity.max_length == 200
        assert config.escalation.complexity.max_question_marks == 2
        assert config.escalation.auto_escalation_enabled is True

    def test_checksum_is_stable(self):
        assert get_active_config().checksum == get_active_config().checksum
        assert get_active_config().checksum == compute_checksum(_default_data())

    def test_load_is_logged(self, captured_logs):
        config = get_active_config()
        loaded = [r for r in captured_logs() if r["message"] == "commerce_config_loaded"]
        assert loaded and loaded[-1]["checksum"] == config.checksum

    def test_templates_match_catalog(self):
        assert REQUIRED_TEMPLATES == set(MessageCatalog.keys())


class TestInvalidConfig:

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_families_out_of_priority_order(self, tmp_path):
        data = _default_data()
        families = data["escalation"]["keyword_families"]
        data["escalation"]["keyword_families"] = list(reversed(families))
        with pytest.raises(ConfigError, match="priority order"):
            get_active_config(_write(tmp_path, data))

    def test_unknown_family(self, tmp_path):
        data = _default_data()
        data["escalation"]["keyword_families"].append(
            {"reason": "payment_validation", "keywords": ["paid"]}
        )
        with pytest.raises(ConfigError) as exc_info:
            get_active_config(_write(tmp_path, data))
        assert any("payment_validation" in e for e in exc_info.value.errors)
        assert exc_info.value.code == "CONFIG_INVALID"

    def test_missing_template(self, tmp_path):
        data = _default_data()
        del data["messages"]["stock_conflict"]
        with pytest.raises(ConfigError, match="stock_conflict"):
            get_active_config(_write(tmp_path, data))

    def test_template_with_unknown_field(self, tmp_path):
        data = _default_data()
        data["messages"]["order_delivered"] = "Order {order_ref} reached {city}."
        with pytest.raises(ConfigError, match="unknown fields"):
            get_active_config(_write(tmp_path, data))

    def test_non_positive_complexity(self, tmp_path):
        data = _default_data()
        data["escalation"]["complexity"]["max_length"] = 0
        with pytest.raises(ConfigError, match="max_length"):
            get_active_config(_write(tmp_path, data))

    def test_missing_required_key_is_config_error(self, tmp_path):
        data = _default_data()
        del data["escalation"]
        with pytest.raises(ConfigError, match="cannot parse"):
            get_active_config(_write(tmp_path, data))

    def test_missing_family_is_only_a_warning(self, tmp_path, captured_logs):
        data = _default_data()
        data["escalation"]["keyword_families"] = [
            f for f in data["escalation"]["keyword_families"] if f["reason"] != "delivery"
        ]
        config = get_active_config(_write(tmp_path, data))
        assert len(config.escalation.keyword_families) == 2
        warnings = [r for r in captured_logs() if r["message"] == "commerce_config_warning"]
        assert any("delivery" in r["detail"] for r in warnings)


class TestBridges:

    def test_escalation_rules(self):
        rules = build_escalation_rules(get_active_config())
        assert rules.keyword_rules[0].reason == EscalationReason.DEFECT_REFUND
        assert "refund" in rules.keyword_rules[0].keywords
        assert rules.complexity.max_length == 200

    def test_message_catalog_uses_configured_wording(self, tmp_path):
        data = _default_data()
        data["messages"]["order_delivered"] = "Commande {order_ref} livrée."
        catalog = build_message_catalog(get_active_config(_write(tmp_path, data)))
        assert catalog.render("order_delivered", order_ref="A1") == "Commande A1 livrée."

    def test_workflow_settings(self, tmp_path):
        data = _default_data()
        data["escalation"]["auto_escalation_enabled"] = False
        data["escalation"]["resolve_on_payment_confirmed"] = True
        data["database"]["max_transient_retries"] = 5
        settings = build_workflow_settings(get_active_config(_write(tmp_path, data)))
        assert settings.auto_escalate is False
        assert settings.resolve_on_confirm is True
        assert settings.max_transient_retries == 5

    def test_engine_options(self):
        options = engine_options(get_active_config())
        assert options["pool_size"] == 20
        assert options["sqlite_busy_timeout"] == 30.0
        assert "max_transient_retries" not in options
