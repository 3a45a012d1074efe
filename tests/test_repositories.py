"""
Tests for APT repository rewriting and keyring retrieval.
"""

import hashlib
from datetime import datetime

import httpx
import pytest

from pveup.core.errors import ActionFailure, KeyringVerificationError
from pveup.core.system.repositories import FileRepositoryRewriter, render_deb822

KEYRING = b"-----fake keyring-----"
KEYRING_SHA = hashlib.sha256(KEYRING).hexdigest()
URL = "https://enterprise.proxmox.com/debian/proxmox-archive-keyring-trixie.gpg"


def _clock() -> datetime:
    return datetime(2025, 8, 5, 14, 30)


def _rewriter(handler=None) -> FileRepositoryRewriter:
    handler = handler or (lambda request: httpx.Response(200, content=KEYRING))
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return FileRepositoryRewriter(client, timeout=5.0, clock=_clock)


class TestRenderDeb822:
    def test_stanza(self) -> None:
        text = render_deb822(
            uris="http://download.proxmox.com/debian/pve",
            suites="trixie",
            components="pve-no-subscription",
            signed_by="/usr/share/keyrings/proxmox-archive-keyring.gpg",
            architectures="amd64",
        )

        assert text.splitlines() == [
            "Types: deb",
            "URIs: http://download.proxmox.com/debian/pve",
            "Suites: trixie",
            "Components: pve-no-subscription",
            "Signed-By: /usr/share/keyrings/proxmox-archive-keyring.gpg",
            "Architectures: amd64",
        ]

    def test_architectures_optional(self) -> None:
        text = render_deb822(uris="u", suites="s", components="c", signed_by="k")

        assert "Architectures" not in text


class TestWriteRepositoryConfig:
    def test_writes_new_file_without_backup(self, tmp_path) -> None:
        path = tmp_path / "pve.sources"

        assert _rewriter().write_repository_config("Types: deb\n", path) is True
        assert path.read_text() == "Types: deb\n"
        assert list(tmp_path.iterdir()) == [path]

    def test_same_content_is_noop(self, tmp_path) -> None:
        path = tmp_path / "pve.sources"
        path.write_text("Types: deb\n")

        assert _rewriter().write_repository_config("Types: deb\n", path) is False
        assert list(tmp_path.iterdir()) == [path]

    def test_backs_up_previous_content(self, tmp_path) -> None:
        path = tmp_path / "pve.sources"
        path.write_text("old\n")

        _rewriter().write_repository_config("new\n", path)

        backup = tmp_path / "pve.sources.backup.20250805"
        assert backup.read_text() == "old\n"
        assert path.read_text() == "new\n"

    def test_backup_directory(self, tmp_path) -> None:
        directory = tmp_path / "sources.list.d"
        directory.mkdir()
        (directory / "a.list").write_text("deb x bookworm main\n")

        dest = _rewriter().backup_file(directory)

        assert (dest / "a.list").exists()


class TestReplaceSuite:
    def test_whole_word_only(self, tmp_path) -> None:
        path = tmp_path / "sources.list"
        path.write_text(
            "deb http://deb.debian.org/debian bookworm main\n"
            "deb http://deb.debian.org/debian bookworm-updates main\n"
            "deb http://example.com/notbookwormish stable main\n"
        )

        assert _rewriter().replace_suite(path, "bookworm", "trixie") is True

        assert path.read_text() == (
            "deb http://deb.debian.org/debian trixie main\n"
            "deb http://deb.debian.org/debian trixie-updates main\n"
            "deb http://example.com/notbookwormish stable main\n"
        )

    def test_missing_or_rewritten_file(self, tmp_path) -> None:
        path = tmp_path / "sources.list"
        rewriter = _rewriter()

        assert rewriter.replace_suite(path, "bookworm", "trixie") is False
        path.write_text("deb http://deb.debian.org/debian trixie main\n")
        assert rewriter.replace_suite(path, "bookworm", "trixie") is False


class TestFindFilesMentioning:
    def test_filters_by_pattern_and_content(self, tmp_path) -> None:
        (tmp_path / "pve-enterprise.list").write_text("deb x bookworm pve-enterprise\n")
        (tmp_path / "ceph.list").write_text("deb x trixie no-subscription\n")
        (tmp_path / "pve.sources").write_text("Suites: bookworm\n")

        found = _rewriter().find_files_mentioning(tmp_path, "*.list", "bookworm")

        assert found == [tmp_path / "pve-enterprise.list"]

    def test_missing_directory(self, tmp_path) -> None:
        assert _rewriter().find_files_mentioning(tmp_path / "nope", "*.list", "x") == []


class TestFetchAndVerifyKeyring:
    def test_installs_verified_keyring(self, tmp_path) -> None:
        dest = tmp_path / "keyrings" / "proxmox-archive-keyring.gpg"

        assert _rewriter().fetch_and_verify_keyring(URL, KEYRING_SHA, dest) is True
        assert dest.read_bytes() == KEYRING

    def test_existing_keyring_is_not_downloaded(self, tmp_path) -> None:
        dest = tmp_path / "keyring.gpg"
        dest.write_bytes(b"existing")
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, content=KEYRING)

        assert _rewriter(handler).fetch_and_verify_keyring(URL, KEYRING_SHA, dest) is False
        assert requests == []

    def test_checksum_mismatch_leaves_nothing(self, tmp_path) -> None:
        dest = tmp_path / "keyring.gpg"
        rewriter = _rewriter(lambda request: httpx.Response(200, content=b"tampered"))

        with pytest.raises(KeyringVerificationError) as exc_info:
            rewriter.fetch_and_verify_keyring(URL, KEYRING_SHA, dest)

        assert exc_info.value.expected == KEYRING_SHA
        assert not dest.exists()
        assert list(tmp_path.iterdir()) == []

    def test_http_error(self, tmp_path) -> None:
        rewriter = _rewriter(lambda request: httpx.Response(404))

        with pytest.raises(ActionFailure, match="HTTP 404"):
            rewriter.fetch_and_verify_keyring(URL, KEYRING_SHA, tmp_path / "keyring.gpg")

    def test_timeout(self, tmp_path) -> None:
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ActionFailure, match="timed out"):
            _rewriter(handler).fetch_and_verify_keyring(URL, KEYRING_SHA, tmp_path / "k.gpg")

    def test_network_error(self, tmp_path) -> None:
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(ActionFailure, match="network error"):
            _rewriter(handler).fetch_and_verify_keyring(URL, KEYRING_SHA, tmp_path / "k.gpg")
