from __future__ import annotations
import time
from typing import Any, Dict, Optional

import jwt
import requests
import structlog

from relaypake.crypto.primitives import b64e
from relaypake.protocol.errors import UpstreamError
from relaypake.protocol.shapes import AppCredentials, Installed

logger = structlog.get_logger()

API_ROOT = "https://api.github.com"
API_VERSION = "2022-11-28"
JWT_TTL_S = 10 * 60


class GitHub:
    """Thin REST client for the calls the workflows need."""

    def __init__(self, owner: str, repo: str, token: str = "",
                 session: Optional[requests.Session] = None, timeout: float = 10.0):
        self.owner = owner
        self.repo = repo
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def request(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> requests.Response:
        headers = {"Accept": "application/vnd.github+json", "X-GitHub-Api-Version": API_VERSION}
        auth = self.token if token is None else token
        if auth:
            headers["Authorization"] = "bearer " + auth
        try:
            resp = self.session.request(method, API_ROOT + path, headers=headers,
                                        timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise UpstreamError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise UpstreamError(f"{method} {path} returned {resp.status_code}", status=resp.status_code)
        return resp

    def _open_issue(self) -> Optional[Dict[str, Any]]:
        path = f"/repos/{self.owner}/{self.repo}/issues"
        params = {"creator": self.owner, "state": "open"}
        try:
            issues = self.request("GET", path, params=params).json()
        except ValueError as e:
            raise UpstreamError(f"GET {path} returned invalid JSON: {e}") from e
        if not isinstance(issues, list) or not all(isinstance(i, dict) for i in issues):
            raise UpstreamError(f"GET {path} did not return a list of issues")
        return issues[0] if issues else None

    def issue_text(self) -> str:
        issue = self._open_issue()
        return (issue or {}).get("body") or ""

    def write_issue(self, body: str, title: str = "relaypake") -> None:
        issue = self._open_issue()
        if issue:
            path = f"/repos/{self.owner}/{self.repo}/issues/{issue['number']}"
            self.request("PATCH", path, json={"body": body})
        else:
            self.request("POST", f"/repos/{self.owner}/{self.repo}/issues", json={"title": title, "body": body})

    def set_secret(self, env: str, name: str, value: str, token: str) -> None:
        from nacl import encoding, public
        base = f"/repos/{self.owner}/{self.repo}/environments/{env}/secrets"
        key = self.request("GET", f"{base}/public-key", token=token).json()
        pk = public.PublicKey(key["key"].encode("utf-8"), encoding.Base64Encoder())
        sealed = public.SealedBox(pk).encrypt(value.encode("utf-8"))
        body = {"encrypted_value": b64e(sealed), "key_id": key["key_id"]}
        self.request("PUT", f"{base}/{name}", token=token, json=body)
        logger.info("secret_written", env=env, name=name)


def app_jwt(app: AppCredentials, now: Optional[float] = None) -> str:
    t = int(time.time() if now is None else now)
    payload = {"iat": t - 60, "exp": t + JWT_TTL_S, "iss": app.id}
    try:
        return jwt.encode(payload, app.pem, algorithm="RS256")
    except (ValueError, TypeError, jwt.PyJWTError) as e:
        raise UpstreamError(f"Unable to sign app JWT: {e}") from e


class GitHubApps:
    """Installation Token Provider and manifest exchange backed by GitHub."""

    def __init__(self, github: GitHub):
        self.github = github

    def convert_manifest(self, code: str) -> AppCredentials:
        out = self.github.request("POST", f"/app-manifests/{code}/conversions", token="").json()
        return AppCredentials(
            id=str(out["id"]), client_id=out["client_id"],
            client_secret=out["client_secret"], pem=out["pem"],
        )

    def find_installation(self, app: AppCredentials) -> Optional[int]:
        """Installation id for the owner, or None while the app is not installed."""
        path = f"/users/{self.github.owner}/installation"
        try:
            out = self.github.request("GET", path, token=app_jwt(app)).json()
        except UpstreamError as e:
            if e.status == 404:
                return None
            raise
        if not isinstance(out.get("id"), int) or not isinstance(out.get("permissions"), dict):
            return None
        return out["id"]

    def create_installation_token(self, app: AppCredentials, installation_id: int) -> Installed:
        path = f"/app/installations/{installation_id}/access_tokens"
        out = self.github.request("POST", path, token=app_jwt(app)).json()
        perms = {k: str(v) for k, v in (out.get("permissions") or {}).items()}
        return Installed(token=out["token"], expires_at=out.get("expires_at") or "", permissions=perms)
