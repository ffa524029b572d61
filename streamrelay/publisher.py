import base64
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

import requests

from .exceptions import PublishConflictError, PublishError
from .storage import Entry

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"


def build_mapping(
    entries: Iterable[Entry],
    encode: Callable[[str], str],
    now: datetime | None = None,
) -> Dict[str, Dict[str, Any]]:
    """Public JSON document: obfuscated token -> {url, title, updated}."""
    updated = (now or datetime.utcnow()).isoformat() + "Z"
    return {
        (entry.token or encode(entry.id)): {
            "url": entry.stream_url,
            "title": entry.title,
            "updated": updated,
        }
        for entry in entries
    }


class GitHubPublisher:
    """
    Writes the mapping to a single file in a GitHub repository.

    The write is conditioned on the blob sha read just before it, so a file
    changed by someone else in between fails with PublishConflictError.
    """

    def __init__(
        self,
        token: Optional[str],
        owner: Optional[str],
        repo: Optional[str],
        path: str = "links.json",
        branch: Optional[str] = None,
        public_base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
    ) -> None:
        self.token = token
        self.owner = owner
        self.repo = repo
        self.path = path
        self.branch = branch
        self.public_base_url = public_base_url
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.token and self.owner and self.repo)

    @property
    def contents_url(self) -> str:
        return f"{GITHUB_API}/repos/{self.owner}/{self.repo}/contents/{self.path}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
        }

    def public_link(self, token: str) -> str:
        base = self.public_base_url or f"https://{self.owner}.github.io/{self.repo}"
        return f"{base.rstrip('/')}/r/{token}"

    def current_sha(self) -> Optional[str]:
        """Revision token of the remote file, or None when it does not exist yet."""
        params = {"ref": self.branch} if self.branch else None
        try:
            resp = self.session.get(
                self.contents_url, headers=self._headers(), params=params, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise PublishError(f"Could not read {self.path}: {exc}") from exc

        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise PublishError(f"Reading {self.path} returned HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise PublishError(f"Reading {self.path} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise PublishError(f"{self.path} is not a file in {self.owner}/{self.repo}")
        return data.get("sha")

    def publish(self, mapping: Dict[str, Dict[str, Any]]) -> None:
        if not self.configured:
            raise PublishError("GitHub publisher is not configured")

        sha = self.current_sha()
        content = json.dumps(mapping, indent=2).encode("utf-8")
        body: Dict[str, Any] = {
            "message": f"Update links - {datetime.utcnow().isoformat()}Z",
            "content": base64.b64encode(content).decode("ascii"),
        }
        if sha:
            body["sha"] = sha
        if self.branch:
            body["branch"] = self.branch

        try:
            resp = self.session.put(
                self.contents_url, headers=self._headers(), json=body, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise PublishError(f"Could not write {self.path}: {exc}") from exc

        if resp.status_code in (200, 201):
            logger.info("Published %d links to %s/%s:%s", len(mapping), self.owner, self.repo, self.path)
            return
        if resp.status_code == 409:
            raise PublishConflictError(sha, resp.text)
        if resp.status_code == 422 and "sha" in resp.text:
            raise PublishConflictError(sha, resp.text)
        raise PublishError(f"Writing {self.path} returned HTTP {resp.status_code}")
