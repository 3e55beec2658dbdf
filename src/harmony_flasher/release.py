"""
Vendor release fetcher.

Looks up the latest official release and keeps its update bundle in a local
cache directory, named after the release file. A cached bundle is reused as
is on later runs.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional

import requests
from requests import exceptions as req_exc

from harmony_flasher.config import HTTP_TIMEOUT, RELEASE_URL
from harmony_flasher.errors import ReleaseError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK = 64 * 1024


@dataclass(frozen=True)
class ReleaseFile:
    url: str
    name: str
    size: str = ""


@dataclass(frozen=True)
class Release:
    """Release metadata as served by the vendor API."""
    version: str
    file: ReleaseFile
    date: str = ""
    product: str = ""
    mandatory_versions: List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Any) -> "Release":
        if not isinstance(data, dict):
            raise ReleaseError("Release metadata is not a JSON object")
        file_data = data.get("file")
        if not isinstance(file_data, dict):
            raise ReleaseError("Release metadata has no file object")
        url = file_data.get("url")
        name = file_data.get("name")
        if not isinstance(url, str) or not url:
            raise ReleaseError("Release file has no url")
        if not isinstance(name, str) or not name:
            raise ReleaseError("Release file has no name")
        # The name becomes a cache path, so it must not point elsewhere
        if Path(name).name != name or name in (".", ".."):
            raise ReleaseError(f"Release file name is not a plain file name: {name!r}")

        return cls(
            version=str(data.get("version", "")),
            date=str(data.get("date", "")),
            product=str(data.get("product", "")),
            file=ReleaseFile(url=url, name=name, size=str(file_data.get("size", ""))),
            mandatory_versions=[str(v) for v in data.get("mandatoryVersions") or []],
        )


class ReleaseFetcher:
    """Thin wrapper around ``requests.Session`` for the release API."""

    def __init__(
        self,
        release_url: str = RELEASE_URL,
        timeout: float = HTTP_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.release_url = release_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def latest_release(self) -> Release:
        """
        Fetch metadata of the latest release.

        Raises:
            ReleaseError: On network failure, non-200 status or bad JSON
        """
        try:
            resp = self.session.get(self.release_url, timeout=self.timeout)
        except req_exc.RequestException as e:
            raise ReleaseError(f"Could not get latest release: {e}")

        if resp.status_code != 200:
            raise ReleaseError(f"Error getting latest release: {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise ReleaseError(f"Could not parse response body: {e}")

        release = Release.from_json(data)
        logger.info(f"Latest release: {release.product} {release.version} ({release.file.name})")
        return release

    def cached_path(self, release: Release, cache_dir: Path) -> Path:
        """Where the bundle of release lives in cache_dir."""
        return Path(cache_dir) / release.file.name

    def ensure_release_file(
        self,
        release: Release,
        cache_dir: Path,
        progress_cb: Optional[Callable[[int, Optional[int]], None]] = None,
    ) -> Path:
        """
        Return the cached bundle path, downloading it first if missing.

        Args:
            release: Release whose file should be cached
            cache_dir: Cache directory
            progress_cb: Optional callback(bytes_done, total_bytes_or_None)

        Raises:
            ReleaseError: On download or disk failure
        """
        target = self.cached_path(release, cache_dir)
        if target.exists():
            logger.info(f"Using cached update file: {target}")
            return target

        logger.info(f"Downloading update file: {release.file.name}")
        partial = target.with_name(target.name + ".part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with self.session.get(release.file.url, stream=True, timeout=self.timeout) as resp:
                if resp.status_code != 200:
                    raise ReleaseError(
                        f"Could not download update file: HTTP {resp.status_code}"
                    )
                total = _content_length(resp)
                done = 0
                with open(partial, "wb") as out:
                    for block in resp.iter_content(chunk_size=DOWNLOAD_CHUNK):
                        if not block:
                            continue
                        out.write(block)
                        done += len(block)
                        if progress_cb:
                            progress_cb(done, total)
            partial.replace(target)
        except req_exc.RequestException as e:
            partial.unlink(missing_ok=True)
            raise ReleaseError(f"Could not download update file: {e}")
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise ReleaseError(f"Could not write update file {target}: {e}")

        return target


def _content_length(resp: requests.Response) -> Optional[int]:
    value = resp.headers.get("Content-Length")
    if value and value.isdigit():
        return int(value)
    return None
