"""Tests for the result contract parser and run classification."""

from __future__ import annotations

import json

import pytest

from checkbar.checks.contract import CheckStatus, ContractError, evaluate, parse_contract

from conftest import make_run


# ── parse_contract ───────────────────────────────────────────────────────────


class TestParseContract:
    def test_minimal(self) -> None:
        c = parse_contract('{"result": true}')
        assert c.result is True
        assert c.changing is False
        assert c.url is None
        assert c.info == []

    def test_all_fields(self) -> None:
        c = parse_contract(json.dumps({
            "result": False,
            "changing": True,
            "url": "https://ci/job/1/console",
            "info": [["Build", "#1"], ["SHA", "abcdef"]],
            "extra": "ignored",
        }))
        assert c.result is False
        assert c.changing is True
        assert c.url == "https://ci/job/1/console"
        assert c.info == [("Build", "#1"), ("SHA", "abcdef")]

    def test_surrounding_whitespace(self) -> None:
        assert parse_contract('\n  {"result": true}\n\n').result is True

    def test_null_optionals_mean_defaults(self) -> None:
        c = parse_contract('{"result": true, "changing": null, "url": null, "info": null}')
        assert c.changing is False
        assert c.info == []

    @pytest.mark.parametrize(
        "stdout, fragment",
        [
            ("", "no output"),
            ("not json", "invalid JSON"),
            ("[1, 2]", "expected a JSON object"),
            ('{"changing": true}', "missing required field 'result'"),
            ('{"result": "yes"}', "result"),
            ('{"result": 1}', "result"),
            ('{"result": true, "changing": "no"}', "changing"),
            ('{"result": true, "url": 5}', "url"),
            ('{"result": true, "info": [["only-one"]]}', "info"),
            ('{"result": true, "info": [["a", 1]]}', "info"),
            ('{"result": true, "info": "text"}', "info"),
        ],
    )
    def test_violations(self, stdout: str, fragment: str) -> None:
        with pytest.raises(ContractError) as exc:
            parse_contract(stdout)
        assert fragment in str(exc.value)


# ── evaluate ─────────────────────────────────────────────────────────────────


class TestEvaluate:
    def test_ok(self) -> None:
        ev = evaluate(make_run(stdout='{"result": true, "info": [["k", "v"]]}'))
        assert ev.status == CheckStatus.OK
        assert ev.info == (("k", "v"),)

    def test_failing(self) -> None:
        ev = evaluate(make_run(stdout='{"result": false, "changing": true, "url": "u"}'))
        assert ev.status == CheckStatus.FAILING
        assert ev.changing is True
        assert ev.url == "u"

    def test_malformed_stdout_is_error_with_diagnostic(self) -> None:
        ev = evaluate(make_run(stdout="not json"))
        assert ev.status == CheckStatus.ERROR
        assert ev.info[0][0] == "Error"
        assert "invalid JSON" in ev.info[0][1]

    def test_nonzero_exit_without_json(self) -> None:
        ev = evaluate(make_run(stdout="", stderr="boom", exit_code=2))
        assert ev.status == CheckStatus.ERROR
        assert ("Exit status", "2") in ev.info

    def test_nonzero_exit_with_valid_json_uses_contract(self) -> None:
        ev = evaluate(make_run(stdout='{"result": false}', exit_code=1))
        assert ev.status == CheckStatus.FAILING

    def test_spawn_failure(self) -> None:
        ev = evaluate(make_run(exit_code=-1, failure="Failed to start command: nope"))
        assert ev.status == CheckStatus.ERROR
        assert ev.info == (("Error", "Failed to start command: nope"),)
