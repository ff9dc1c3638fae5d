"""Tests for the mintgate CLI — proves CLI dispatches correctly."""

import json
from pathlib import Path

import pytest

from mintgate.cli import build_parser, main
from mintgate.identity import sign_request

REQUEST_ID = "0x" + "ab" * 32
OPERATOR = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"


class TestCLIParsing:
    def test_hash_command(self) -> None:
        args = build_parser().parse_args(["hash", "message.eml"])
        assert args.command == "hash"
        assert args.file == Path("message.eml")

    def test_cost_command(self) -> None:
        args = build_parser().parse_args(["cost", "--attachments", "2"])
        assert args.attachments == 2

    def test_verify_command(self) -> None:
        args = build_parser().parse_args([
            "verify", "--request-id", REQUEST_ID, "--signature", "0x00", "--signer", OPERATOR,
        ])
        assert args.request_id == REQUEST_ID
        assert args.signer == OPERATOR

    def test_log_level(self) -> None:
        args = build_parser().parse_args(["--log-level", "DEBUG", "cost", "--attachments", "0"])
        assert args.log_level == "DEBUG"


class TestCLIExecution:
    def test_no_command_shows_help(self, capsys) -> None:
        assert main([]) == 0

    def test_cost(self, capsys) -> None:
        assert main(["cost", "--attachments", "2"]) == 0
        assert json.loads(capsys.readouterr().out) == {"attachments": 2, "credit_cost": 8}

    def test_negative_cost_fails(self, capsys) -> None:
        assert main(["cost", "--attachments", "-1"]) == 1
        assert "Failed" in capsys.readouterr().err

    def test_hash_file(self, tmp_path: Path, make_email, capsys) -> None:
        path = tmp_path / "message.eml"
        path.write_bytes(make_email(attachments=[("a.pdf", b"data")]))
        assert main(["hash", str(path)]) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["attachment_count"] == 1
        assert len(output["full_hash"]) == 64

    def test_hash_missing_file(self, tmp_path: Path, capsys) -> None:
        assert main(["hash", str(tmp_path / "missing.eml")]) == 1
        assert "Failed" in capsys.readouterr().err

    def test_hash_invalid_document(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "empty.eml"
        path.write_bytes(b"")
        assert main(["hash", str(path)]) == 1

    def test_package_file(self, tmp_path: Path, make_email, capsys) -> None:
        path = tmp_path / "message.eml"
        path.write_bytes(make_email())
        assert main(["package", str(path)]) == 0
        package = json.loads(capsys.readouterr().out)
        assert package["verification"]["packageHash"]

    def test_sign_then_verify(self, owner_account, capsys) -> None:
        assert main(["sign", "--request-id", REQUEST_ID, "--key", owner_account.key.hex()]) == 0
        signature = capsys.readouterr().out.strip()
        assert signature == sign_request(REQUEST_ID, owner_account.key)
        assert main([
            "verify", "--request-id", REQUEST_ID,
            "--signature", signature, "--signer", owner_account.address,
        ]) == 0

    def test_verify_wrong_signer(self, owner_account, other_account, capsys) -> None:
        signature = sign_request(REQUEST_ID, other_account.key)
        assert main([
            "verify", "--request-id", REQUEST_ID,
            "--signature", signature, "--signer", owner_account.address,
        ]) == 1

    def test_sign_bad_request_id(self, owner_account, capsys) -> None:
        assert main(["sign", "--request-id", "req-1", "--key", owner_account.key.hex()]) == 1

    def test_status(self, tmp_path: Path, monkeypatch, capsys) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("", encoding="utf-8")
        monkeypatch.setenv("MINTGATE_OPERATOR_ADDRESS", OPERATOR)
        assert main(["status", "--env-file", str(env_file)]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["operator"] == OPERATOR
        assert status["backends"]["content_store"] == "InMemoryContentStore"

    def test_status_without_operator_fails(self, tmp_path: Path, monkeypatch, capsys) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("", encoding="utf-8")
        for name in ("MINTGATE_OPERATOR_ADDRESS", "MINTGATE_RPC_URL", "MINTGATE_PRIVATE_KEY"):
            monkeypatch.delenv(name, raising=False)
        assert main(["status", "--env-file", str(env_file)]) == 1
        assert "Operator address is not configured" in capsys.readouterr().err
