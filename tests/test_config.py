from figma_config import RelayConfig, load_config


class TestLoadConfig:
    def test_defaults(self):
        config = load_config([], env={})
        assert config == RelayConfig()
        assert config.host == "127.0.0.1"
        assert config.port == 8765
        assert config.request_timeout_ms == 15000
        assert config.max_events == 200
        assert config.stdio_enabled and config.mcp_http_enabled

    def test_environment_values(self):
        config = load_config([], env={
            "FIGMA_MCP_HOST": "0.0.0.0",
            "FIGMA_MCP_PORT": "9000",
            "FIGMA_MCP_TIMEOUT_MS": "2500",
            "FIGMA_MCP_MAX_EVENTS": "10",
            "FIGMA_MCP_TRANSPORT": "HTTP",
            "FIGMA_MCP_LOG_LEVEL": "debug",
        })
        assert (config.host, config.port) == ("0.0.0.0", 9000)
        assert config.request_timeout_ms == 2500
        assert config.max_events == 10
        assert config.transport == "http"
        assert config.log_level == "DEBUG"
        assert not config.stdio_enabled

    def test_cli_overrides_environment(self):
        config = load_config(["--port=7000", "--transport=stdio", "--mcp-path=rpc", "stray"], env={"FIGMA_MCP_PORT": "9000"})
        assert config.port == 7000
        assert config.transport == "stdio"
        assert not config.mcp_http_enabled
        assert config.mcp_path == "/rpc"

    def test_invalid_numbers_fall_back(self):
        config = load_config(["--timeout-ms=soon"], env={"FIGMA_MCP_PORT": "-1", "FIGMA_MCP_MAX_EVENTS": "0"})
        assert config.port == 8765
        assert config.request_timeout_ms == 15000
        assert config.max_events == 200

    def test_unknown_transport_falls_back(self):
        assert load_config(["--transport=carrier-pigeon"], env={}).transport == "both"
