# Tests for the keyward command line.
# Created: 2026-10-19

import string

import pytest

from keyward.__main__ import main


def _run(monkeypatch, *argv):
    monkeypatch.setattr("sys.argv", ["keyward", *argv])
    with pytest.raises(SystemExit) as exc:
        main()
    return exc.value.code


class TestCli:
    def test_keygen(self, monkeypatch, capsys):
        assert _run(monkeypatch, "keygen") == 0
        lines = dict(line.split("=", 1) for line in capsys.readouterr().out.splitlines())
        key = lines["KEYWARD_ENCRYPTION_KEY"]
        assert len(key) == 64
        assert all(c in string.hexdigits for c in key)
        assert len(lines["KEYWARD_JWT_SECRET"]) >= 43

    def test_serve_refuses_bad_key(self, monkeypatch):
        monkeypatch.setenv("KEYWARD_ENCRYPTION_KEY", "not-hex")
        calls = []
        monkeypatch.setattr("keyward.api.serve.run_api_server", lambda **kw: calls.append(kw))
        assert _run(monkeypatch, "serve") != 0
        assert calls == []

    def test_serve_starts_server(self, monkeypatch):
        calls = []
        monkeypatch.setattr("keyward.api.serve.run_api_server", lambda **kw: calls.append(kw))
        assert _run(monkeypatch, "serve", "--port", "9999") == 0
        assert calls == [{"host": "127.0.0.1", "port": 9999, "dev": False}]

    def test_sweep(self, monkeypatch, capsys):
        assert _run(monkeypatch, "sweep") == 0
        assert "Removed 0 expired grant(s)" in capsys.readouterr().out

    def test_version(self, monkeypatch, capsys):
        assert _run(monkeypatch, "--version") == 0
        assert capsys.readouterr().out.startswith("keyward ")
