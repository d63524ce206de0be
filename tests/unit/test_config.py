"""Tests for configuration loading and validation."""

import os
from pathlib import Path
from tempfile import NamedTemporaryFile

import pytest
from pydantic import ValidationError

from dm_reply_agent.config.loader import load_config, substitute_env_vars, validate_config
from dm_reply_agent.config.schema import (
    AgentConfig,
    AnthropicConfig,
    ClassifierConfig,
    InstagramConfig,
    PipelineConfig,
    QueueConfig,
    ServerConfig,
    StorageConfig,
    WebhookConfig,
)


def _base_config(**overrides):
    values = {
        "webhook": WebhookConfig(app_secret="secret"),
        "instagram": InstagramConfig(access_token="EAAtest", business_account_id="1784"),
    }
    values.update(overrides)
    return AgentConfig(**values)


class TestSubstituteEnvVars:
    """Test environment variable substitution."""

    def test_substitute_single_var(self):
        """Test substituting a single environment variable."""
        os.environ["TEST_VAR"] = "test_value"
        result = substitute_env_vars("Value is ${TEST_VAR}")
        assert result == "Value is test_value"
        del os.environ["TEST_VAR"]

    def test_substitute_multiple_vars(self):
        """Test substituting multiple environment variables."""
        os.environ["VAR1"] = "value1"
        os.environ["VAR2"] = "value2"
        result = substitute_env_vars("${VAR1} and ${VAR2}")
        assert result == "value1 and value2"
        del os.environ["VAR1"]
        del os.environ["VAR2"]

    def test_missing_env_var_raises(self):
        """Test that missing environment variables raise ValueError."""
        with pytest.raises(ValueError, match="Environment variable MISSING not found"):
            substitute_env_vars("Value is ${MISSING}")

    def test_no_substitution_needed(self):
        """Test text without environment variables passes through unchanged."""
        result = substitute_env_vars("plain text without vars")
        assert result == "plain text without vars"


class TestWebhookConfig:
    """Test webhook configuration validation."""

    def test_defaults(self):
        """Test default values."""
        config = WebhookConfig(app_secret="secret")
        assert config.platform == "instagram"
        assert config.verify_token is None

    def test_empty_app_secret_rejected(self):
        """Test that an empty app secret is rejected."""
        with pytest.raises(ValidationError):
            WebhookConfig(app_secret="")

    def test_unknown_platform_rejected(self):
        """Test that only instagram is accepted as a platform."""
        with pytest.raises(ValidationError):
            WebhookConfig(app_secret="secret", platform="whatsapp")


class TestInstagramConfig:
    """Test Instagram delivery configuration validation."""

    def test_defaults(self):
        """Test default values."""
        config = InstagramConfig(access_token="EAAtest", business_account_id="1784")
        assert config.base_url == "https://graph.facebook.com"
        assert config.timeout == 30.0

    @pytest.mark.parametrize("account_id", ["", "17/84", " 1784", "1784 "])
    def test_invalid_business_account_id_rejected(self, account_id):
        """Test that account ids that would break the send URL are rejected."""
        with pytest.raises(ValidationError):
            InstagramConfig(access_token="EAAtest", business_account_id=account_id)

    def test_timeout_bounds(self):
        """Test timeout bounds."""
        with pytest.raises(ValidationError):
            InstagramConfig(access_token="t", business_account_id="1", timeout=0)
        with pytest.raises(ValidationError):
            InstagramConfig(access_token="t", business_account_id="1", timeout=121)


class TestQueueConfig:
    """Test queue configuration validation."""

    def test_default_values(self):
        """Test default values."""
        config = QueueConfig()
        assert config.concurrency == 1
        assert config.shutdown_timeout == 30.0

    def test_concurrency_bounds(self):
        """Test concurrency bounds."""
        QueueConfig(concurrency=50)
        with pytest.raises(ValidationError):
            QueueConfig(concurrency=0)
        with pytest.raises(ValidationError):
            QueueConfig(concurrency=51)


class TestPipelineConfig:
    """Test pipeline configuration validation."""

    def test_default_threshold(self):
        """Test the default confidence threshold."""
        assert PipelineConfig().confidence_threshold == 0.6

    def test_confidence_threshold_bounds(self):
        """Test confidence threshold bounds."""
        PipelineConfig(confidence_threshold=0.0)
        PipelineConfig(confidence_threshold=1.0)
        with pytest.raises(ValidationError):
            PipelineConfig(confidence_threshold=-0.1)
        with pytest.raises(ValidationError):
            PipelineConfig(confidence_threshold=1.1)


class TestServerConfig:
    """Test server configuration validation."""

    def test_default_values(self):
        """Test default values."""
        config = ServerConfig()
        assert config.port == 3000
        assert config.admin_enabled is True

    def test_port_bounds(self):
        """Test port bounds."""
        with pytest.raises(ValidationError):
            ServerConfig(port=0)
        with pytest.raises(ValidationError):
            ServerConfig(port=70000)


class TestLoadConfig:
    """Test configuration loading from YAML."""

    def test_load_valid_config(self):
        """Test loading a valid configuration file."""
        os.environ["TEST_META_APP_SECRET"] = "meta-secret"
        os.environ["TEST_META_ACCESS_TOKEN"] = "EAAtesttoken"
        os.environ["TEST_ANTHROPIC_KEY"] = "sk-ant-test"

        yaml_content = """
webhook:
  app_secret: ${TEST_META_APP_SECRET}
  verify_token: "verify-me"

instagram:
  access_token: ${TEST_META_ACCESS_TOKEN}
  business_account_id: "17841400000000000"

classifier:
  provider: anthropic
  anthropic:
    api_key: ${TEST_ANTHROPIC_KEY}

queue:
  concurrency: 4

pipeline:
  confidence_threshold: 0.75
"""

        with NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write(yaml_content)
            f.flush()

            try:
                config = load_config(Path(f.name))
                assert config.webhook.app_secret == "meta-secret"
                assert config.webhook.verify_token == "verify-me"
                assert config.instagram.access_token == "EAAtesttoken"
                assert config.classifier.provider == "anthropic"
                assert config.classifier.anthropic.api_key == "sk-ant-test"
                assert config.queue.concurrency == 4
                assert config.pipeline.confidence_threshold == 0.75
                assert config.storage.backend == "memory"
            finally:
                Path(f.name).unlink()
                del os.environ["TEST_META_APP_SECRET"]
                del os.environ["TEST_META_ACCESS_TOKEN"]
                del os.environ["TEST_ANTHROPIC_KEY"]

    def test_load_config_missing_file(self):
        """Test that loading non-existent file raises error."""
        with pytest.raises(FileNotFoundError):
            load_config(Path("/nonexistent/config.yaml"))

    def test_load_config_missing_env_var(self):
        """Test that missing environment variable raises error."""
        yaml_content = """
webhook:
  app_secret: ${MISSING_VAR}
instagram:
  access_token: EAAtest
  business_account_id: "1784"
"""

        with NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write(yaml_content)
            f.flush()

            try:
                with pytest.raises(ValueError, match="Environment variable MISSING_VAR not found"):
                    load_config(Path(f.name))
            finally:
                Path(f.name).unlink()

    def test_load_config_missing_section(self):
        """Test that a missing required section fails validation."""
        with NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write("webhook:\n  app_secret: secret\n")
            f.flush()

            try:
                with pytest.raises(ValidationError):
                    load_config(Path(f.name))
            finally:
                Path(f.name).unlink()


class TestValidateConfig:
    """Test cross-field configuration validation."""

    def test_anthropic_provider_without_anthropic_config(self):
        """Test that selecting anthropic without its config raises error."""
        config = _base_config(classifier=ClassifierConfig(provider="anthropic", anthropic=None))

        with pytest.raises(
            ValueError, match="Anthropic classifier selected but anthropic config missing"
        ):
            validate_config(config)

    def test_sql_backend_with_invalid_url(self):
        """Test that the sql backend requires a URL with a scheme."""
        config = _base_config(storage=StorageConfig(backend="sql", url="not-a-url"))

        with pytest.raises(ValueError, match="Invalid storage url"):
            validate_config(config)

    def test_valid_config_passes(self):
        """Test that valid configuration passes validation."""
        config = _base_config(
            classifier=ClassifierConfig(
                provider="anthropic", anthropic=AnthropicConfig(api_key="test")
            ),
            storage=StorageConfig(backend="sql", url="sqlite+aiosqlite:///agent.db"),
        )

        # Should not raise
        validate_config(config)

    def test_defaults_pass(self):
        """Test that the default classifier and storage pass validation."""
        validate_config(_base_config())

    def test_sql_backend_requires_async_driver(self):
        """Test that a synchronous driver url is rejected."""
        config = _base_config(storage=StorageConfig(backend="sql", url="sqlite:///agent.db"))

        with pytest.raises(ValueError, match="async driver"):
            validate_config(config)


class TestCommentedReferences:
    """Test substitution skips YAML comments."""

    def test_commented_line_is_not_substituted(self):
        """Test a commented-out variable need not be set."""
        text = "# api_key: ${NOT_EXPORTED}\nplain: value\n"
        assert substitute_env_vars(text) == text

    def test_inline_reference_after_indent(self, monkeypatch):
        """Test indented settings are still substituted."""
        monkeypatch.setenv("IG_TOKEN", "EAAvalue")
        assert substitute_env_vars("  access_token: ${IG_TOKEN}\n") == "  access_token: EAAvalue\n"

    def test_load_config_accepts_str_path(self, tmp_path):
        """Test load_config takes a plain string path."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "webhook:\n  app_secret: s\ninstagram:\n"
            "  access_token: EAAtest\n  business_account_id: '1784'\n"
        )

        config = load_config(str(path))

        assert config.instagram.business_account_id == "1784"
