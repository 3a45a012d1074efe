"""
APT repository rewriting and keyring retrieval.

Rewrites are idempotent: a file whose content already matches is left alone
(no backup, no write). Otherwise the previous file is copied to a dated backup
next to it before being replaced atomically.

The archive keyring is fetched over HTTPS with httpx and verified against a
pinned SHA-256 before it is moved into place; a mismatch never leaves a file
behind.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import tempfile
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import httpx

from pveup.core.errors import ActionFailure, KeyringVerificationError

logger = logging.getLogger(__name__)


def render_deb822(
    *,
    uris: str,
    suites: str,
    components: str,
    signed_by: str,
    architectures: str | None = None,
) -> str:
    """Render a single-stanza deb822 ``.sources`` file."""
    lines = [
        "Types: deb",
        f"URIs: {uris}",
        f"Suites: {suites}",
        f"Components: {components}",
        f"Signed-By: {signed_by}",
    ]
    if architectures:
        lines.append(f"Architectures: {architectures}")
    return "\n".join(lines) + "\n"


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FileRepositoryRewriter:
    """
    Repository rewriter operating on the local filesystem.

    Attributes:
        client: HTTP client used for keyring downloads
        timeout: Download timeout in seconds
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.client = client
        self.timeout = timeout
        self._clock = clock

    def backup_file(self, path: Path) -> Path:
        """
        Copy ``path`` (file or directory) to ``<path>.backup.<YYYYMMDD>``.

        Re-running on the same day refreshes the same backup.
        """
        dest = path.with_name(f"{path.name}.backup.{self._clock().strftime('%Y%m%d')}")
        if path.is_dir():
            shutil.copytree(path, dest, dirs_exist_ok=True)
        else:
            shutil.copy2(path, dest)
        logger.info("Backed up %s to %s", path, dest)
        return dest

    def write_repository_config(self, content: str, path: Path) -> bool:
        """
        Write a repository file, backing up any different previous content.

        Returns:
            True if the file was written, False if it already had ``content``
        """
        if path.exists():
            if path.read_text() == content:
                logger.info("%s already up to date", path)
                return False
            self.backup_file(path)
        _atomic_write(path, content.encode())
        logger.info("Wrote %s", path)
        return True

    def replace_suite(self, path: Path, old: str, new: str) -> bool:
        """
        Replace whole-word occurrences of suite ``old`` with ``new``.

        Returns:
            True if the file changed, False if it is missing or already rewritten
        """
        if not path.exists():
            return False
        text = path.read_text()
        updated = re.sub(rf"\b{re.escape(old)}\b", new, text)
        if updated == text:
            return False
        return self.write_repository_config(updated, path)

    def find_files_mentioning(self, directory: Path, pattern: str, needle: str) -> list[Path]:
        """List files in ``directory`` matching ``pattern`` that contain ``needle``."""
        if not directory.is_dir():
            return []
        matches = []
        for candidate in sorted(directory.glob(pattern)):
            try:
                if candidate.is_file() and needle in candidate.read_text():
                    matches.append(candidate)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Could not read %s: %s", candidate, e)
        return matches

    def fetch_and_verify_keyring(self, url: str, expected_checksum: str, dest: Path) -> bool:
        """
        Download a keyring, verify its SHA-256 and install it at ``dest``.

        Args:
            url: HTTPS URL of the keyring
            expected_checksum: Lowercase hex SHA-256
            dest: Install location

        Returns:
            True if installed, False if ``dest`` already existed

        Raises:
            ActionFailure: On network or HTTP errors
            KeyringVerificationError: If the checksum does not match
        """
        if dest.exists():
            logger.info("Keyring %s already present", dest)
            return False

        logger.info("Downloading archive keyring from %s", url)
        client = self.client or httpx.Client(timeout=self.timeout, follow_redirects=True)
        try:
            response = client.get(url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ActionFailure(f"Keyring download timed out after {self.timeout}s: {e}") from e
        except httpx.HTTPStatusError as e:
            raise ActionFailure(
                f"Keyring download failed: HTTP {e.response.status_code}",
                returncode=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise ActionFailure(f"Keyring download failed: network error: {e}") from e
        finally:
            if self.client is None:
                client.close()

        data = response.content
        actual = sha256_of(data)
        if actual != expected_checksum.lower():
            raise KeyringVerificationError(url, expected_checksum, actual)

        _atomic_write(dest, data)
        logger.info("Keyring verified and installed at %s", dest)
        return True
