#!/usr/bin/env python3
# filename: release.py
"""
GitHub release discovery and asset download.
"""

import base64
import os
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Dict, Optional

import orjson as json

from errors import SourceUnavailableError
from utils import get_logger

logger = get_logger("Release")

GITHUB_API = "https://api.github.com"
USER_AGENT = "geoip-ruleset-builder"
DEFAULT_TIMEOUT = 60.0


@dataclass
class Release:
    repo: str
    name: str
    tag: str
    assets: Dict[str, str] = field(default_factory=dict)  # asset name -> download url

    @classmethod
    def from_api(cls, repo: str, payload: dict) -> "Release":
        assets = {
            asset['name']: asset['browser_download_url']
            for asset in payload.get('assets') or []
            if asset.get('name') and asset.get('browser_download_url')
        }
        tag = payload.get('tag_name') or ''
        return cls(repo=repo, name=payload.get('name') or tag, tag=tag, assets=assets)


class ReleaseClient:
    def __init__(self, token: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT,
                 api_url: str = GITHUB_API):
        self.token = token
        self.timeout = timeout
        self.api_url = api_url.rstrip('/')

    def _headers(self, accept: str) -> Dict[str, str]:
        headers = {'Accept': accept, 'User-Agent': USER_AGENT}
        if self.token:
            credentials = base64.b64encode(f"{self.token}:".encode()).decode()
            headers['Authorization'] = f"Basic {credentials}"
        return headers

    def _get(self, url: str, accept: str) -> bytes:
        request = urllib.request.Request(url, headers=self._headers(accept))
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                return response.read()
        except (urllib.error.URLError, OSError) as e:
            raise SourceUnavailableError(f"GET {url} failed: {e}") from e

    def fetch_release(self, repo: str, tag: Optional[str] = None) -> Release:
        """Latest release of repo ('owner/name'), or the release tagged tag."""
        if tag:
            url = f"{self.api_url}/repos/{repo}/releases/tags/{tag}"
        else:
            url = f"{self.api_url}/repos/{repo}/releases/latest"

        body = self._get(url, 'application/vnd.github+json')
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise SourceUnavailableError(f"Bad release payload from {url}: {e}") from e
        if not isinstance(payload, dict):
            raise SourceUnavailableError(f"Bad release payload from {url}")

        release = Release.from_api(repo, payload)
        logger.info(f"  📦 {repo}: {release.name} ({len(release.assets)} assets)")
        return release

    def download_asset(self, release: Release, asset_name: str) -> bytes:
        url = release.assets.get(asset_name)
        if not url:
            raise SourceUnavailableError(
                f"{asset_name} not found in upstream release {release.name}")
        logger.info(f"download {url}")
        return self._get(url, 'application/octet-stream')


def is_up_to_date(source: Release, destination: Optional[Release]) -> bool:
    return destination is not None and source.name in destination.name


def set_action_output(name: str, content: str) -> None:
    """Report a step output to the CI runner."""
    output_file = os.environ.get('GITHUB_OUTPUT')
    if output_file:
        with open(output_file, 'a', encoding='utf-8') as f:
            f.write(f"{name}={content}\n")
    else:
        print(f"::set-output name={name}::{content}", flush=True)
