"""Unit tests for the upload CLI: file discovery, config and an end-to-end run."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from finvision_service.uploads.cli import build_parser
from finvision_service.uploads.config import UploadClientConfig
from finvision_service.uploads.main import _amain
from finvision_service.uploads.planner import discover_files, is_accepted

_ACCEPTED = ("image/", "application/pdf")

_RESULT = {
    "date": "2026-09-02",
    "vendor": "Acme Consulting",
    "total_amount": 5100.0,
    "category": "Services",
    "currency": "PLN",
    "type": "income",
}


@pytest.fixture
def inbox(tmp_path: Path) -> Path:
    folder = tmp_path / "inbox"
    (folder / "nested").mkdir(parents=True)
    (folder / "a.pdf").write_bytes(b"%PDF-1.4 a")
    (folder / "nested" / "b.png").write_bytes(b"\x89PNG b")
    (folder / "notes.txt").write_text("not a receipt")
    return folder


class TestDiscovery:
    def test_accept_filter(self):
        assert is_accepted("image/jpeg", _ACCEPTED)
        assert is_accepted("application/pdf", _ACCEPTED)
        assert not is_accepted("text/plain", _ACCEPTED)
        assert not is_accepted("", _ACCEPTED)

    def test_directory_expansion_filters_types(self, inbox: Path):
        files = discover_files([inbox], accepted_prefixes=_ACCEPTED)
        assert [f.name for f in files] == ["a.pdf", "b.png"]
        assert files[1].mime_type == "image/png"

    def test_explicit_files_are_not_filtered(self, inbox: Path):
        files = discover_files([inbox / "notes.txt"], accepted_prefixes=_ACCEPTED)
        assert [f.name for f in files] == ["notes.txt"]

    def test_missing_path(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            discover_files([tmp_path / "nope.pdf"], accepted_prefixes=_ACCEPTED)


class TestConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("FINVISION_SERVER_URL", "https://finvision.example.com")
        monkeypatch.setenv("FINVISION_TOKEN", "tok")
        cfg = UploadClientConfig.from_env()
        cfg.validate()
        assert cfg.server_url == "https://finvision.example.com"

    @pytest.mark.parametrize(
        ("field", "value"),
        [("server_url", "ftp://x"), ("token", ""), ("policy", "refund"), ("timeout_seconds", 0)],
    )
    def test_validate_rejects(self, field, value):
        cfg = UploadClientConfig(
            server_url="http://localhost:8080",
            token="tok",
            policy="auto",
            accepted_mime_prefixes=_ACCEPTED,
            timeout_seconds=10,
        )
        with pytest.raises(ValueError):
            UploadClientConfig(**{**cfg.__dict__, field: value}).validate()

    def test_parser_defaults(self):
        args = build_parser().parse_args(["a.pdf"])
        assert args.paths == [Path("a.pdf")]
        assert args.policy is None
        assert args.server is None


class TestRun:
    def _transport(self, fail_analyze_for: bytes | None = None) -> tuple[httpx.MockTransport, list[str]]:
        saved: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            if request.url.path == "/api/analyze":
                if fail_analyze_for is not None and fail_analyze_for in body["base64_data"].encode():
                    return httpx.Response(502, json={"detail": "Failed to process document"})
                return httpx.Response(200, json=_RESULT)
            saved.append(request.url.path)
            return httpx.Response(201, json=body)

        return httpx.MockTransport(handler), saved

    async def test_successful_batch(self, inbox: Path, capsys):
        transport, saved = self._transport()
        code = await _amain(
            [str(inbox), "--server", "http://finvision.test", "--token", "tok", "--policy", "expense"],
            transport=transport,
        )

        assert code == 0
        assert saved == ["/api/transactions", "/api/documents"] * 2
        out = capsys.readouterr().out
        assert "Batch complete: 2 completed, 0 failed" in out
        assert "a.pdf" in out and "b.png" in out
        assert "notes.txt" not in out

    async def test_failed_job_sets_exit_code(self, inbox: Path, capsys):
        # base64 of b"%PDF-1.4 a" starts with this prefix
        transport, saved = self._transport(fail_analyze_for=b"JVBERi0xLjQgYQ")
        code = await _amain(
            [str(inbox), "--server", "http://finvision.test", "--token", "tok", "--quiet"],
            transport=transport,
        )

        assert code == 2
        assert saved == ["/api/transactions", "/api/documents"]
        out = capsys.readouterr().out
        assert "Batch complete: 1 completed, 1 failed" in out
        assert "! Failed to process document" in out

    async def test_missing_token_is_usage_error(self, inbox: Path, monkeypatch):
        monkeypatch.delenv("FINVISION_TOKEN", raising=False)
        with pytest.raises(SystemExit) as exc_info:
            await _amain([str(inbox)])
        assert exc_info.value.code == 2

    async def test_nothing_to_upload(self, tmp_path: Path):
        code = await _amain([str(tmp_path), "--token", "tok"])
        assert code == 0
