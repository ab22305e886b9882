# tests/test_cli.py
import pytest

from mountproxy import cli
from mountproxy.core.config import Settings
from mountproxy.services.cors import CorsPolicy
from mountproxy.services.location import LocationStrategy


def _settings(*argv) -> Settings:
    return cli.settings_from_args(cli.build_parser().parse_args(list(argv)))


def test_defaults():
    settings = _settings("https://cdn.example.net/npm")
    assert settings.target == "https://cdn.example.net/npm"
    assert settings.port == cli.DEFAULT_PORT
    assert settings.base == "/"
    assert settings.location is LocationStrategy.SAME
    assert settings.cors_setting is False


def test_bare_cors_flag_reflects_origin():
    config = _settings("https://cdn.example.net", "--cors").to_proxy_config(lambda e: None)
    assert config.cors == CorsPolicy(enabled=True)


def test_cors_with_origin():
    config = _settings("https://cdn.example.net", "--cors", "https://app.example").to_proxy_config(lambda e: None)
    assert config.cors.origins == ("https://app.example",)


def test_flags_map_onto_settings():
    settings = _settings(
        "http://127.0.0.1:9000/site",
        "--port", "9100",
        "--base", "/site/",
        "--location", "rewrite",
        "--referer", "http://127.0.0.1:9000/",
        "--drop-encoding-headers",
        "--unframe",
        "--forwarded-headers",
    )
    assert settings.port == 9100
    assert settings.base == "/site/"
    assert settings.location is LocationStrategy.REWRITE
    assert settings.referer == "http://127.0.0.1:9000/"
    assert settings.drop_encoding_headers
    assert settings.strip_restriction_headers
    assert settings.forwarded_headers


@pytest.mark.parametrize("argv", [[], ["cdn.example.net/npm"], ["ftp://files.example"]])
def test_missing_or_non_http_url_prints_usage(argv, capsys):
    assert cli.main(argv) == 1
    assert "usage: mountproxy" in capsys.readouterr().out


def test_main_serves_app(monkeypatch):
    served = {}

    def fake_run(app, host, port, log_level):
        served.update(app=app, host=host, port=port, log_level=log_level)

    monkeypatch.setattr(cli.uvicorn, "run", fake_run)
    assert cli.main(["https://cdn.example.net/npm", "--port", "9999", "--base", "/npm"]) == 0
    assert served["port"] == 9999
    assert served["host"] == "127.0.0.1"
    assert served["app"].state.proxy_config.base == "/npm"


def test_settings_reject_bad_base():
    with pytest.raises(RuntimeError, match="Invalid configuration"):
        Settings(target="https://cdn.example.net", base="npm").to_proxy_config(lambda e: None)


def test_settings_require_target():
    with pytest.raises(RuntimeError, match="PROXY_TARGET"):
        Settings().to_proxy_config(lambda e: None)


def test_load_settings_from_environment(monkeypatch):
    from mountproxy.core.config import load_settings

    monkeypatch.setenv("PROXY_TARGET", "https://cdn.example.net/npm")
    monkeypatch.setenv("PROXY_BASE", "/npm")
    monkeypatch.setenv("PROXY_LOCATION", "redirect")
    monkeypatch.setenv("PROXY_CORS", "https://a.example,https://b.example")
    monkeypatch.setenv("PROXY_DROP_ENCODING_HEADERS", "true")
    monkeypatch.setenv("UPSTREAM_TIMEOUT_S", "5")
    settings = load_settings()
    assert settings.location is LocationStrategy.REDIRECT
    assert settings.drop_encoding_headers
    assert settings.upstream_timeout_s == 5.0
    config = settings.to_proxy_config(lambda e: None)
    assert config.cors.origins == ("https://a.example", "https://b.example")


def test_load_settings_rejects_bad_location(monkeypatch):
    from mountproxy.core.config import load_settings

    monkeypatch.setenv("PROXY_LOCATION", "sideways")
    with pytest.raises(RuntimeError, match="Invalid configuration"):
        load_settings()


def test_stray_environment_does_not_break_the_cli(monkeypatch):
    import importlib

    from mountproxy.core import config as config_module

    monkeypatch.setenv("PROXY_LOCATION", "sideways")
    importlib.reload(config_module)
    monkeypatch.setattr(cli.uvicorn, "run", lambda app, host, port, log_level: None)
    assert cli.main(["https://cdn.example.net/npm", "--location", "rewrite"]) == 0
