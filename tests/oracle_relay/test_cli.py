from __future__ import annotations

from oracle_relay.__main__ import build_parser, main


def test_parser_defaults() -> None:
    args = build_parser().parse_args([])
    assert args.log_level == "INFO"
    assert args.http_port is None


def test_invalid_configuration_exits_with_error(monkeypatch) -> None:
    monkeypatch.setenv("NETWORK_NAME", "base-sepolia-testnet")
    monkeypatch.delenv("BASE_SEPOLIA_TESTNET_RPC", raising=False)
    assert main(["--log-level", "DEBUG"]) == 1
