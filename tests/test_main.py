import json

import pytest

from warranty_bot import main as cli
from warranty_bot.models import RegistrationResult


def _results(*codes):
    seq = iter(codes)
    calls = []

    def run_once():
        code = next(seq)
        calls.append(code)
        if code is None:
            return RegistrationResult(success=True, message="ok")
        return RegistrationResult(success=False, message=code, error_code=code)

    return run_once, calls


def test_retries_retryable_failures_until_success():
    run_once, calls = _results("ERROR", "ERROR", None)
    result, attempts = cli.run_with_retries(run_once, retries=3, delay_s=0)
    assert result.success
    assert attempts == 3


def test_business_rule_failure_not_retried():
    run_once, calls = _results("ALREADY_REGISTERED", None)
    result, attempts = cli.run_with_retries(run_once, retries=3, delay_s=0)
    assert result.error_code == "ALREADY_REGISTERED"
    assert attempts == 1


def test_retries_exhausted():
    run_once, calls = _results("ERROR", "ERROR")
    result, attempts = cli.run_with_retries(run_once, retries=1, delay_s=0)
    assert not result.success
    assert attempts == 2


def test_exception_in_attempt_becomes_result():
    def run_once():
        raise RuntimeError("kaboom")

    result, attempts = cli.run_with_retries(run_once, retries=0, delay_s=0)
    assert result.error_code == "ERROR"
    assert "kaboom" in result.message


def test_run_command_exit_codes_and_summary(tmp_path, monkeypatch):
    payload = tmp_path / "payload.json"
    payload.write_text(json.dumps({"products": [{"serial": "a", "model": "b"}], "installationDate": "1/1/2025"}))
    out = tmp_path / "summary.json"
    monkeypatch.setenv("WR_DOWNLOAD_DIR", str(tmp_path / "dl"))

    outcomes = iter([RegistrationResult(success=True, message="ok"),
                     RegistrationResult(success=False, message="bad", error_code="INVALID_SERIAL")])
    monkeypatch.setattr(cli, "run_registration", lambda *a, **kw: next(outcomes))

    code = cli.main(["run", "--payload", str(payload), "--repeat", "2", "--out", str(out)])

    assert code == 1
    summary = json.loads(out.read_text())
    assert [row["success"] for row in summary] == [True, False]


def test_run_command_rejects_invalid_payload(tmp_path):
    payload = tmp_path / "payload.json"
    payload.write_text(json.dumps({"products": []}))
    assert cli.main(["run", "--payload", str(payload)]) == 2


def test_missing_payload_file(tmp_path):
    assert cli.main(["run", "--payload", str(tmp_path / "nope.json")]) == 2


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])
