"""Jenkins status adapter — prints a Jenkins job's status as a check result.

Usage (from a checkfile):

    ci: jenkins.check https://ci.example.com my-job
    ci-all: jenkins.check https://ci.example.com my-job --root-api

Two query modes:
  per-job (default)  {base}/job/{job}/api/json?depth=1&tree=<job fields>
  --root-api         {base}/api/json?depth=2&tree=jobs[<job fields>]

Writes the result contract JSON to stdout. Fetch or parse failures go to
stderr with a non-zero exit status.
"""

from __future__ import annotations

import argparse
import functools
import json
import logging
import sys
from collections.abc import Callable
from datetime import datetime
from typing import Any, Mapping
from urllib.parse import quote

import httpx
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Colors Jenkins reports for a passing job, idle or currently rebuilding.
SUCCESS_COLORS = frozenset({"blue", "blue_anime"})

SHA_LENGTH = 6
SEPARATOR = ("-", "")
MISSING_SHA = "<missing>"

FieldSpec = Mapping[str, Any]  # leaf: True, nested: another FieldSpec

BUILD_FIELDS: FieldSpec = {
    "id": True,
    "result": True,
    "building": True,
    "fullDisplayName": True,
    "url": True,
    "timestamp": True,
    "duration": True,
    "changeSet": {
        "items": {
            "msg": True,
            "commitId": True,
            "author": {"fullName": True},
        },
    },
    "actions": {
        "lastBuiltRevision": {"SHA1": True},
    },
}

JOB_FIELDS: FieldSpec = {
    "name": True,
    "color": True,
    "lastBuild": BUILD_FIELDS,
    "lastSuccessfulBuild": BUILD_FIELDS,
}


class JenkinsSettings(BaseSettings):
    """Adapter settings loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    jenkins_user: str = ""
    jenkins_token: str = ""
    jenkins_timeout: float = 30.0
    jenkins_verify_ssl: bool = True


class UpstreamFetchError(Exception):
    """Raised when Jenkins is unreachable or returns something other than JSON."""


class JobNotFoundError(Exception):
    """Raised when root-api mode finds no job with the requested name."""


# ── Tree selector ────────────────────────────────────────────────────────────


def build_tree(fields: FieldSpec, escape: bool = True) -> str:
    """Serialize a field spec into a Jenkins ``tree=`` selector.

    ``{"name": True, "lastBuild": {"id": True}}`` → ``name,lastBuild\\[id\\]``.
    Brackets are backslash-escaped by default so the selector survives a
    shell or curl globbing; pass ``escape=False`` for an HTTP client.
    """
    open_, close = ("\\[", "\\]") if escape else ("[", "]")
    parts = []
    for key, value in fields.items():
        if isinstance(value, Mapping):
            parts.append(f"{key}{open_}{build_tree(value, escape)}{close}")
        else:
            parts.append(key)
    return ",".join(parts)


def job_api_url(base_url: str, job: str, pretty: bool = False, escape: bool = False) -> str:
    url = f"{base_url.rstrip('/')}/job/{quote(job)}/api/json?depth=1&tree={build_tree(JOB_FIELDS, escape)}"
    return url + "&pretty=true" if pretty else url


def root_api_url(base_url: str, pretty: bool = False, escape: bool = False) -> str:
    tree = build_tree({"jobs": JOB_FIELDS}, escape)
    url = f"{base_url.rstrip('/')}/api/json?depth=2&tree={tree}"
    return url + "&pretty=true" if pretty else url


# ── Upstream fetch ───────────────────────────────────────────────────────────


def fetch_json(
    url: str,
    client: httpx.Client | None = None,
    config: JenkinsSettings | None = None,
) -> Any:
    """GET a Jenkins API URL and decode the JSON body."""
    config = config or JenkinsSettings()
    auth = (config.jenkins_user, config.jenkins_token) if config.jenkins_user else None
    try:
        if client is not None:
            resp = client.get(url, auth=auth) if auth else client.get(url)
        else:
            with httpx.Client(
                timeout=config.jenkins_timeout,
                follow_redirects=True,
                verify=config.jenkins_verify_ssl,
            ) as c:
                resp = c.get(url, auth=auth) if auth else c.get(url)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise UpstreamFetchError(f"Jenkins returned {e.response.status_code} for {url}") from e
    except httpx.HTTPError as e:
        raise UpstreamFetchError(f"Cannot reach Jenkins: {type(e).__name__}: {e}") from e

    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamFetchError(f"Jenkins returned invalid JSON: {e}") from e


def select_job(payload: Any, job: str) -> dict[str, Any]:
    """Pick the named job out of a root-api response."""
    jobs = payload.get("jobs") if isinstance(payload, dict) else None
    for entry in jobs or []:
        if isinstance(entry, dict) and entry.get("name") == job:
            return entry
    raise JobNotFoundError(f"status for {job} is not available")


# ── Translation ──────────────────────────────────────────────────────────────


def format_duration(ms: int | float) -> str:
    """Milliseconds → HH:MM:SS (hours may exceed 24)."""
    total = int(ms // 1000)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_started(ms: int | float) -> str:
    """Epoch milliseconds → local date and time."""
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def short_sha(sha: str) -> str:
    return sha[:SHA_LENGTH]


def find_sha(actions: Any) -> str | None:
    """SHA1 from the first action carrying a ``lastBuiltRevision``."""
    for action in actions or []:
        if isinstance(action, dict) and "lastBuiltRevision" in action:
            revision = action["lastBuiltRevision"] or {}
            sha = revision.get("SHA1")
            return str(sha) if sha else None
    return None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _last_build_info(build: Mapping[str, Any]) -> list[tuple[str, str]]:
    info = [
        ("Build", _text(build.get("fullDisplayName"))),
        ("Duration", format_duration(build.get("duration") or 0)),
        ("Started", format_started(build.get("timestamp") or 0)),
    ]
    sha = find_sha(build.get("actions"))
    if sha:
        info.append(("SHA", short_sha(sha)))
    return info


def _last_successful_info(build: Mapping[str, Any]) -> list[tuple[str, str]]:
    info = [
        SEPARATOR,
        ("Last Successful Build", ""),
        ("  Name", _text(build.get("fullDisplayName"))),
        ("  Duration", format_duration(build.get("duration") or 0)),
    ]
    sha = find_sha(build.get("actions"))
    if sha:
        info.append(("  SHA", short_sha(sha)))
    info.append(("  Started", format_started(build.get("timestamp") or 0)))
    return info


def _change_items(build: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    change_set = build.get("changeSet") or {}
    return [i for i in change_set.get("items") or [] if isinstance(i, Mapping)]


def job_to_contract(job: Mapping[str, Any]) -> dict[str, Any]:
    """Translate a Jenkins job document into the check result contract."""
    last = job.get("lastBuild") or {}
    info: list[tuple[str, str]] = []

    if last:
        info.extend(_last_build_info(last))

        items = _change_items(last)
        author = (items[-1].get("author") or {}).get("fullName") if items else None
        if author:
            info.append(("Author", _text(author)))
        if items:
            info.append(SEPARATOR)
            info.append(("Recents", ""))
            for item in reversed(items):
                commit = item.get("commitId")
                info.append((f" - {_text(item.get('msg'))}", short_sha(str(commit)) if commit else MISSING_SHA))

    last_ok = job.get("lastSuccessfulBuild")
    if last_ok and last_ok.get("id") != last.get("id"):
        info.extend(_last_successful_info(last_ok))

    url = last.get("url")
    return {
        "result": job.get("color") in SUCCESS_COLORS,
        "changing": bool(last.get("building")),
        "url": f"{url}console" if url else None,
        "info": [list(pair) for pair in info],
    }


# ── Adapter ──────────────────────────────────────────────────────────────────


class JenkinsStatus:
    """Fetches one job's status; ``fetch`` is any callable mapping URL → decoded JSON."""

    def __init__(
        self,
        base_url: str,
        job: str,
        root_api: bool = False,
        pretty: bool = False,
        fetch: Callable[[str], Any] | None = None,
    ) -> None:
        self.base_url = base_url
        self.job = job
        self.root_api = root_api
        self.pretty = pretty
        self._fetch = fetch or fetch_json

    @property
    def url(self) -> str:
        if self.root_api:
            return root_api_url(self.base_url, pretty=self.pretty)
        return job_api_url(self.base_url, self.job, pretty=self.pretty)

    def job_payload(self) -> dict[str, Any]:
        logger.debug("Fetching %s", self.url)
        payload = self._fetch(self.url)
        if self.root_api:
            return select_job(payload, self.job)
        if not isinstance(payload, dict):
            raise UpstreamFetchError(f"expected a JSON object from Jenkins, got {type(payload).__name__}")
        return payload

    def to_contract(self) -> dict[str, Any]:
        return job_to_contract(self.job_payload())


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="jenkins.check",
        description="Report a Jenkins job's status as a check result.",
    )
    parser.add_argument("base_url", help="Jenkins base URL, e.g. https://ci.example.com")
    parser.add_argument("job", help="Job name")
    parser.add_argument("--root-api", action="store_true", help="Query the aggregate /api/json endpoint")
    parser.add_argument("--pretty-api", action="store_true", help="Ask Jenkins for pretty-printed JSON")
    parser.add_argument("--timeout", type=float, help="HTTP timeout in seconds (default: JENKINS_TIMEOUT or 30)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    config = JenkinsSettings()
    if args.timeout:
        config.jenkins_timeout = args.timeout
    status = JenkinsStatus(
        args.base_url,
        args.job,
        root_api=args.root_api,
        pretty=args.pretty_api,
        fetch=functools.partial(fetch_json, config=config),
    )
    try:
        contract = status.to_contract()
    except (UpstreamFetchError, JobNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(contract))
    return 0


if __name__ == "__main__":
    sys.exit(main())
