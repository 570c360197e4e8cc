# publish.py
from __future__ import annotations

import hashlib
import json
import shutil
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol
from urllib.parse import quote, urljoin

from .errors import PublishError
from .model import ArtifactBundle, ArtifactFile, JobResult, Outcome, Release
from .trigger import TriggerDecision
from .ui.console import get_console


@dataclass(frozen=True)
class ReleaseHandle:
    tag: str
    url: str
    assets: Dict[str, str]   # asset name -> "created" | "unchanged" | "replaced"


class ReleaseHost(Protocol):
    """Where releases go. Re-publishing a tag must not duplicate assets."""

    def publish(self, tag: str, bundles: List[ArtifactBundle], prerelease: bool = False) -> ReleaseHandle:
        ...


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def release_assets(tag: str, bundles: Iterable[ArtifactBundle]) -> Dict[str, ArtifactFile]:
    """
    Flatten bundles into release assets keyed by file name.
    Two different files claiming the same asset name is an error.
    """
    assets: Dict[str, ArtifactFile] = {}
    for bundle in bundles:
        for f in bundle.files:
            prior = assets.get(f.name)
            if prior is not None and _sha256_file(prior.path) != _sha256_file(f.path):
                raise PublishError(tag, f"asset name collision: {f.name}", first=str(prior.path), second=str(f.path))
            assets.setdefault(f.name, f)
    return assets


# ----------------------------------------------------------------------
# Hosts
# ----------------------------------------------------------------------

class DirectoryReleaseHost:
    """
    Releases as plain directories:
      root/<tag>/<asset>
      root/<tag>/release.json
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def publish(self, tag: str, bundles: List[ArtifactBundle], prerelease: bool = False) -> ReleaseHandle:
        assets = release_assets(tag, bundles)
        dest = self.root / tag
        statuses: Dict[str, str] = {}
        try:
            dest.mkdir(parents=True, exist_ok=True)
            for name, f in sorted(assets.items()):
                target = dest / name
                digest = _sha256_file(f.path)
                if target.exists():
                    if _sha256_file(target) == digest:
                        statuses[name] = "unchanged"
                        continue
                    statuses[name] = "replaced"
                else:
                    statuses[name] = "created"
                tmp = target.with_name(f".{name}.tmp")
                shutil.copyfile(f.path, tmp)
                tmp.replace(target)

            manifest = {
                "tag": tag,
                "prerelease": prerelease,
                "assets": sorted(p.name for p in dest.iterdir() if p.is_file() and p.name != "release.json"),
                "jobs": sorted(b.job for b in bundles),
            }
            (dest / "release.json").write_text(json.dumps(manifest, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as e:
            raise PublishError(tag, f"could not write release: {e}") from e
        return ReleaseHandle(tag=tag, url=dest.as_uri(), assets=statuses)


class HttpReleaseHost:
    """HTTP client for the release-host API (see cloud/app)."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 60.0):
        # Ensure base_url doesn't end with /
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        tag: str,
        body: Optional[bytes] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        """
        Make an HTTP request to the release API.

        Raises:
            PublishError: If the request fails
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        req_headers = {"Accept": "application/json"}
        if self.token:
            req_headers["Authorization"] = f"Bearer {self.token}"
        if headers:
            req_headers.update(headers)

        req = urllib.request.Request(url, data=body, headers=req_headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                data = response.read().decode("utf-8")
                return json.loads(data) if data else {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise PublishError(tag, f"API request failed: {e.code} {e.reason}. {error_body}".strip(), url=url) from e
        except urllib.error.URLError as e:
            raise PublishError(tag, f"Network error: {e.reason}", url=url) from e
        except json.JSONDecodeError as e:
            raise PublishError(tag, f"Invalid JSON response: {e}", url=url) from e

    def publish(self, tag: str, bundles: List[ArtifactBundle], prerelease: bool = False) -> ReleaseHandle:
        assets = release_assets(tag, bundles)
        tag_path = f"/releases/{quote(tag, safe='')}"
        created = self._request(
            "PUT",
            tag_path,
            tag,
            body=json.dumps({"prerelease": prerelease}).encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        statuses: Dict[str, str] = {}
        for name, f in sorted(assets.items()):
            resp = self._request(
                "PUT",
                f"{tag_path}/assets/{quote(name, safe='')}",
                tag,
                body=f.path.read_bytes(),
                headers={
                    "Content-Type": "application/octet-stream",
                    "X-Asset-Sha256": _sha256_file(f.path),
                },
            )
            statuses[name] = resp.get("status", "created")
        return ReleaseHandle(tag=tag, url=created.get("url", self.base_url + tag_path), assets=statuses)


# ----------------------------------------------------------------------
# Publisher
# ----------------------------------------------------------------------

def successful_bundles(results: Iterable[JobResult]) -> List[ArtifactBundle]:
    """Bundles from Success jobs only; Failed and Skipped jobs never contribute."""
    return [r.bundle for r in results if r.outcome == Outcome.SUCCESS and r.bundle is not None]


def publish_release(
    decision: TriggerDecision,
    results: List[JobResult],
    host: Optional[ReleaseHost],
    *,
    prerelease: bool = False,
    publish_on_partial_failure: bool = True,
) -> Optional[Release]:
    """
    Publish one release from every successful job's bundle.

    Must only be called once all jobs have a terminal outcome. Returns None
    when the run does not publish. Raises PublishError when the host fails;
    that never changes any job's outcome.
    """
    console = get_console()
    if not decision.should_publish or decision.tag is None:
        return None

    tag = decision.tag
    failed_required = [r.name for r in results if r.outcome == Outcome.FAILED and r.instance.required]
    if failed_required and not publish_on_partial_failure:
        console.print_warning(f"release {tag} not published: failed jobs {failed_required}")
        return None

    bundles = successful_bundles(results)
    if not any(b.files for b in bundles):
        console.print_warning(f"release {tag} is empty: no successful job produced artifacts")

    if host is None:
        raise PublishError(tag, "no release host configured")

    handle = host.publish(tag, bundles, prerelease=prerelease)
    release = Release(tag=tag, bundles=tuple(bundles), prerelease=prerelease, url=handle.url)
    console.print_release(release, handle.assets)
    return release
