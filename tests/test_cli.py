"""CLI tests for replay, preflight and verify-claim."""

import json
from pathlib import Path
import sys

import httpx
import pytest

from recanon import cli
from recanon.engine import seal_claim
from recanon._internal.io.artifact_bundle import encode_bundle
from recanon._internal.io.claim_bundle import ClaimDescriptor, decode_claim_bundle, encode_claim_bundle


def _run_cli(args, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["recanon"] + args)
    return cli.main()


def _write_json(path: Path, data: dict) -> None:
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def test_no_command_prints_help(monkeypatch, capsys):
    with pytest.raises(SystemExit) as excinfo:
        _run_cli([], monkeypatch)
    assert excinfo.value.code == 1
    assert "usage: recanon" in capsys.readouterr().out


def test_replay_ok(bundle_file, artifact_bundle, monkeypatch, capsys):
    _run_cli(["replay", str(bundle_file)], monkeypatch)
    out = capsys.readouterr().out
    assert f"[OK] Replay of {artifact_bundle.artifact_id}" in out
    assert "Seed: 42" in out


def test_replay_json(bundle_file, monkeypatch, capsys):
    _run_cli(["replay", str(bundle_file), "--json"], monkeypatch)
    report = json.loads(capsys.readouterr().out)
    assert report["verified"] is True
    assert report["integrity"]["mismatches"] == []


def test_replay_tampered_fails(artifact_bundle, tmp_path, monkeypatch, capsys):
    raw = json.loads(encode_bundle(artifact_bundle))
    raw["manifest"]["seed"] = 43
    path = tmp_path / "tampered.json"
    _write_json(path, raw)
    with pytest.raises(SystemExit) as excinfo:
        _run_cli(["replay", str(path)], monkeypatch)
    assert excinfo.value.code == 1
    out = capsys.readouterr().out
    assert "[FAILED]" in out
    assert "manifestHash" in out


def test_replay_missing_file(tmp_path, monkeypatch, capsys):
    with pytest.raises(SystemExit) as excinfo:
        _run_cli(["replay", str(tmp_path / "missing.json")], monkeypatch)
    assert excinfo.value.code == 1
    assert "File not found" in capsys.readouterr().err


def test_replay_quiet(bundle_file, monkeypatch, capsys):
    _run_cli(["replay", str(bundle_file), "--quiet"], monkeypatch)
    assert capsys.readouterr().out == ""


def test_preflight_ok(tmp_path, monkeypatch, capsys):
    path = tmp_path / "ok.js"
    path.write_text("background(0);\nellipse(0, 0, 10, 10);\n", encoding="utf-8")
    _run_cli(["preflight", str(path)], monkeypatch)
    assert "[OK] Preflight complete" in capsys.readouterr().out


def test_preflight_rejects(tmp_path, monkeypatch, capsys):
    path = tmp_path / "bad.js"
    path.write_text("background(SEED % 255);\n", encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        _run_cli(["preflight", str(path)], monkeypatch)
    assert excinfo.value.code == 1
    captured = capsys.readouterr()
    assert "error [" in captured.err
    assert "[FAILED] Preflight complete" in captured.out


class TestVerifyClaim:
    @pytest.fixture
    def claim_path(self, tmp_path, certified_result, fixed_now):
        bundle = seal_claim(certified_result, ClaimDescriptor(title="Launch poster"), clock=fixed_now)
        path = tmp_path / "claim.json"
        path.write_bytes(encode_claim_bundle(bundle))
        return path

    @pytest.fixture
    def in_process_gateway(self, gateway_app, monkeypatch):
        """Route the CLI's GatewayClient to the in-process app."""
        import recanon.client

        real = recanon.client.GatewayClient

        def factory(base_url, timeout=None, transport=None):
            return real(base_url, timeout=timeout, transport=httpx.ASGITransport(app=gateway_app))

        monkeypatch.setattr(recanon.client, "GatewayClient", factory)

    def test_pass(self, claim_path, in_process_gateway, monkeypatch, capsys):
        with pytest.raises(SystemExit) as excinfo:
            _run_cli(["verify-claim", str(claim_path), "--gateway", "http://gateway.test"], monkeypatch)
        assert excinfo.value.code == cli.EXIT_PASS
        out = capsys.readouterr().out
        assert "[PASS] Launch poster" in out
        assert "Match: exact" in out

    def test_fail(self, claim_path, in_process_gateway, monkeypatch, capsys):
        raw = json.loads(claim_path.read_text(encoding="utf-8"))
        raw["baseline"]["posterHash"] = "sha256:" + "0" * 64
        _write_json(claim_path, raw)
        with pytest.raises(SystemExit) as excinfo:
            _run_cli(["verify-claim", str(claim_path), "--gateway", "http://gateway.test"], monkeypatch)
        assert excinfo.value.code == cli.EXIT_FAIL
        assert "[FAIL]" in capsys.readouterr().out

    def test_write_check(self, claim_path, in_process_gateway, monkeypatch):
        with pytest.raises(SystemExit):
            _run_cli(
                ["verify-claim", str(claim_path), "--gateway", "http://gateway.test", "--write-check"],
                monkeypatch,
            )
        updated = decode_claim_bundle(claim_path.read_bytes())
        assert updated.check.result == "VERIFIED"
        assert updated.check.last_checked_at

    def test_unreachable_gateway(self, claim_path, monkeypatch, capsys):
        with pytest.raises(SystemExit) as excinfo:
            _run_cli(
                ["verify-claim", str(claim_path), "--gateway", "http://127.0.0.1:9", "--timeout", "2"],
                monkeypatch,
            )
        assert excinfo.value.code == cli.EXIT_ERROR
        assert "could not run" in capsys.readouterr().err

    def test_missing_claim(self, tmp_path, monkeypatch, capsys):
        with pytest.raises(SystemExit) as excinfo:
            _run_cli(
                ["verify-claim", str(tmp_path / "none.json"), "--gateway", "http://gateway.test"],
                monkeypatch,
            )
        assert excinfo.value.code == cli.EXIT_ERROR
