"""ProviderConfig + load_provider_config 单元测试

验证环境变量映射、默认值、按模式构建客户端、按配置装配 Router。
"""


import pytest
from modelgate.provider.client import LiteLLMClient
from modelgate.core.config import DISPATCH_MAX_ATTEMPTS
from modelgate.provider.catalog import Catalog
from modelgate.provider.config import (
    ProviderConfig,
    build_client,
    build_router,
    load_provider_config,
)
from modelgate.provider.router import RetryPolicy
from modelgate.provider.echo_adapter import EchoClient
from pydantic import SecretStr, ValidationError


class TestProviderConfig:
    """ProviderConfig 数据模型测试"""

    def test_default_values(self):
        """默认值验证"""
        config = ProviderConfig()
        assert config.proxy_base_url == ""
        assert config.proxy_api_key.get_secret_value() == ""
        assert config.llm_mode == "litellm"
        assert config.timeout_s == 30

    def test_custom_values(self):
        """自定义值构造"""
        config = ProviderConfig(
            proxy_base_url="http://proxy:8080",
            proxy_api_key=SecretStr("sk-test"),
            llm_mode="echo",
            timeout_s=60,
        )
        assert config.proxy_base_url == "http://proxy:8080"
        assert config.proxy_api_key.get_secret_value() == "sk-test"
        assert config.llm_mode == "echo"
        assert config.timeout_s == 60

    def test_timeout_min_value(self):
        """超时最小值为 1"""
        with pytest.raises(ValidationError):
            ProviderConfig(timeout_s=0)

    def test_timeout_negative_rejected(self):
        """负数超时被拒绝"""
        with pytest.raises(ValidationError):
            ProviderConfig(timeout_s=-1)


class TestLoadProviderConfig:
    """load_provider_config() 环境变量映射测试"""

    def test_default_when_no_env(self, monkeypatch):
        """无环境变量时使用默认值"""
        # 清除相关环境变量
        monkeypatch.delenv("LITELLM_PROXY_URL", raising=False)
        monkeypatch.delenv("LITELLM_PROXY_KEY", raising=False)
        monkeypatch.delenv("MODELGATE_LLM_MODE", raising=False)
        monkeypatch.delenv("MODELGATE_LLM_TIMEOUT_S", raising=False)

        config = load_provider_config()
        assert config.proxy_base_url == ""
        assert config.proxy_api_key.get_secret_value() == ""
        assert config.llm_mode == "litellm"
        assert config.timeout_s == 30

    def test_proxy_url_from_env(self, monkeypatch):
        """LITELLM_PROXY_URL 映射"""
        monkeypatch.setenv("LITELLM_PROXY_URL", "http://proxy:9999")
        monkeypatch.delenv("LITELLM_PROXY_KEY", raising=False)
        monkeypatch.delenv("MODELGATE_LLM_MODE", raising=False)
        monkeypatch.delenv("MODELGATE_LLM_TIMEOUT_S", raising=False)

        config = load_provider_config()
        assert config.proxy_base_url == "http://proxy:9999"

    def test_proxy_key_from_env(self, monkeypatch):
        """LITELLM_PROXY_KEY 映射"""
        monkeypatch.delenv("LITELLM_PROXY_URL", raising=False)
        monkeypatch.setenv("LITELLM_PROXY_KEY", "sk-secret")
        monkeypatch.delenv("MODELGATE_LLM_MODE", raising=False)
        monkeypatch.delenv("MODELGATE_LLM_TIMEOUT_S", raising=False)

        config = load_provider_config()
        assert config.proxy_api_key.get_secret_value() == "sk-secret"

    def test_llm_mode_from_env(self, monkeypatch):
        """MODELGATE_LLM_MODE 映射"""
        monkeypatch.delenv("LITELLM_PROXY_URL", raising=False)
        monkeypatch.delenv("LITELLM_PROXY_KEY", raising=False)
        monkeypatch.setenv("MODELGATE_LLM_MODE", "echo")
        monkeypatch.delenv("MODELGATE_LLM_TIMEOUT_S", raising=False)

        config = load_provider_config()
        assert config.llm_mode == "echo"

    def test_timeout_from_env(self, monkeypatch):
        """MODELGATE_LLM_TIMEOUT_S 映射"""
        monkeypatch.delenv("LITELLM_PROXY_URL", raising=False)
        monkeypatch.delenv("LITELLM_PROXY_KEY", raising=False)
        monkeypatch.delenv("MODELGATE_LLM_MODE", raising=False)
        monkeypatch.setenv("MODELGATE_LLM_TIMEOUT_S", "60")

        config = load_provider_config()
        assert config.timeout_s == 60

    def test_invalid_timeout_uses_default(self, monkeypatch):
        """无效 timeout 值不阻塞启动，使用默认值"""
        monkeypatch.delenv("LITELLM_PROXY_URL", raising=False)
        monkeypatch.delenv("LITELLM_PROXY_KEY", raising=False)
        monkeypatch.delenv("MODELGATE_LLM_MODE", raising=False)
        monkeypatch.setenv("MODELGATE_LLM_TIMEOUT_S", "not-a-number")

        config = load_provider_config()
        assert config.timeout_s == 30  # 使用默认值

    def test_invalid_llm_mode_rejected(self):
        """无效的 llm_mode 值被 Pydantic 拒绝"""
        with pytest.raises(ValidationError):
            ProviderConfig(llm_mode="openai")

    def test_all_env_vars(self, monkeypatch):
        """所有环境变量同时设置"""
        monkeypatch.setenv("LITELLM_PROXY_URL", "http://custom:4000")
        monkeypatch.setenv("LITELLM_PROXY_KEY", "sk-key")
        monkeypatch.setenv("MODELGATE_LLM_MODE", "litellm")
        monkeypatch.setenv("MODELGATE_LLM_TIMEOUT_S", "45")

        config = load_provider_config()
        assert config.proxy_base_url == "http://custom:4000"
        assert config.proxy_api_key.get_secret_value() == "sk-key"
        assert config.llm_mode == "litellm"
        assert config.timeout_s == 45


class TestBuildClient:
    """build_client() 按模式选择上游客户端"""

    def test_echo_mode(self):
        assert isinstance(build_client(ProviderConfig(llm_mode="echo")), EchoClient)

    def test_litellm_mode_uses_proxy_settings(self):
        client = build_client(
            ProviderConfig(
                proxy_base_url="http://proxy:4000/",
                proxy_api_key=SecretStr("sk-test"),
            )
        )
        assert isinstance(client, LiteLLMClient)
        assert client.uses_proxy is True


class TestRoutingSettings:
    """重试与单次调用超时随配置进入 Router"""

    def test_defaults_follow_core_constants(self):
        config = ProviderConfig()
        assert config.max_attempts == DISPATCH_MAX_ATTEMPTS
        assert config.retry_policy() == RetryPolicy()

    def test_routing_env_mapping(self, monkeypatch):
        monkeypatch.setenv("MODELGATE_DISPATCH_MAX_ATTEMPTS", "4")
        monkeypatch.setenv("MODELGATE_DISPATCH_ATTEMPT_TIMEOUT_S", "2.5")
        monkeypatch.setenv("MODELGATE_RETRY_BASE_DELAY_S", "0.1")
        monkeypatch.setenv("MODELGATE_RETRY_MAX_DELAY_S", "1")

        config = load_provider_config()
        assert config.attempt_timeout_s == 2.5
        assert config.retry_policy() == RetryPolicy(
            max_attempts=4, base_delay_s=0.1, max_delay_s=1.0
        )

    def test_invalid_routing_value_uses_default(self, monkeypatch):
        monkeypatch.setenv("MODELGATE_DISPATCH_MAX_ATTEMPTS", "many")
        assert load_provider_config().max_attempts == DISPATCH_MAX_ATTEMPTS

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValidationError):
            ProviderConfig(max_attempts=0)

    def test_build_router_applies_settings(self):
        config = ProviderConfig(llm_mode="echo", max_attempts=3, attempt_timeout_s=5)
        router = build_router(config, Catalog(), build_client(config))
        assert router._retry.max_attempts == 3
        assert router._attempt_timeout_s == 5
