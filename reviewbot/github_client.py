"""GitHub API client helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List
from urllib.parse import quote

import httpx
import jwt


class GitHubAPIError(RuntimeError):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, status_code: int, response_body: Any | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


DEFAULT_ACCEPT_HEADER = "application/vnd.github+json"
RAW_ACCEPT_HEADER = "application/vnd.github.raw+json"
DEFAULT_API_VERSION = "2022-11-28"
PAGE_SIZE = 100


@dataclass
class InstallationToken:
    token: str
    expires_at: datetime
    permissions: Dict[str, Any] | None = None

    def is_active(self, *, skew_seconds: int = 60) -> bool:
        """Return True if the token is still valid accounting for clock skew."""

        return self.expires_at - timedelta(seconds=skew_seconds) > datetime.now(timezone.utc)


class GitHubInstallationClient:
    """GitHub App helper for installation-scoped pull request operations."""

    def __init__(
        self,
        *,
        base_url: str,
        app_id: int,
        private_key_pem: str,
        timeout: float = 10.0,
        user_agent: str = "reviewbot/1.0",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._user_agent = user_agent
        self._app_id = app_id
        # Escaped newlines come from single-line environment variables
        self._private_key = private_key_pem.replace("\\n", "\n")
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={
                "User-Agent": self._user_agent,
                "Accept": DEFAULT_ACCEPT_HEADER,
                "X-GitHub-Api-Version": DEFAULT_API_VERSION,
            },
        )
        self._owns_client = client is None
        self._installation_tokens: Dict[int, InstallationToken] = {}
        self._app_slug: str | None = None

    def _build_jwt(self) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "iat": int((now - timedelta(seconds=60)).timestamp()),
            "exp": int((now + timedelta(minutes=10)).timestamp()),
            "iss": str(self._app_id),
        }
        try:
            return jwt.encode(payload, self._private_key, algorithm="RS256")
        except Exception as exc:
            raise GitHubAPIError(
                f"Failed to encode JWT: {exc}. Check that GITHUB_PRIVATE_KEY is a valid RSA private key in PEM format.",
                0,
                None,
            ) from exc

    def _app_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._build_jwt()}",
            "Accept": DEFAULT_ACCEPT_HEADER,
            "X-GitHub-Api-Version": DEFAULT_API_VERSION,
        }

    @staticmethod
    def _installation_headers(token: str, accept: str = DEFAULT_ACCEPT_HEADER) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": accept,
            "X-GitHub-Api-Version": DEFAULT_API_VERSION,
        }

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: Dict[str, str],
        params: Dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, headers=headers, params=params, json=json)
        except httpx.HTTPError as exc:
            raise GitHubAPIError(f"GitHub API request to {url} failed: {exc}", 0, None) from exc
        if response.status_code >= 400:
            detail: Any | None
            if response.content:
                try:
                    detail = response.json()
                except ValueError:
                    detail = response.text
            else:
                detail = None
            raise GitHubAPIError(
                f"GitHub API request to {url} failed with status {response.status_code}.",
                response.status_code,
                detail,
            )
        return response

    async def _paginate(self, url: str, *, headers: Dict[str, str], what: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                url,
                headers=headers,
                params={"per_page": PAGE_SIZE, "page": page},
            )
            batch = response.json()
            if not isinstance(batch, list):
                raise GitHubAPIError(
                    f"Unexpected response while listing {what}.",
                    response.status_code,
                    batch,
                )
            items.extend(batch)
            if len(batch) < PAGE_SIZE:
                break
            page += 1
        return items

    async def _fetch_installation_token(
        self, installation_id: int, permissions: Dict[str, Any] | None = None
    ) -> InstallationToken:
        payload = {"permissions": permissions} if permissions else None
        response = await self._request(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            headers=self._app_headers(),
            json=payload,
        )
        data = response.json()
        token_value = data.get("token")
        if not token_value:
            raise GitHubAPIError(
                "GitHub did not return an installation token.",
                response.status_code,
                data,
            )

        expires_at_raw = data.get("expires_at")
        if not expires_at_raw:
            raise GitHubAPIError(
                "GitHub did not return an expires_at value for installation token.",
                response.status_code,
                data,
            )
        return InstallationToken(
            token=token_value,
            expires_at=_parse_github_timestamp(expires_at_raw),
            permissions=data.get("permissions"),
        )

    async def get_installation_token(
        self, installation_id: int, permissions: Dict[str, Any] | None = None
    ) -> InstallationToken:
        cached = self._installation_tokens.get(installation_id)
        if cached and cached.is_active():
            return cached

        token = await self._fetch_installation_token(installation_id, permissions)
        self._installation_tokens[installation_id] = token
        return token

    async def _headers_for(self, installation_id: int, accept: str = DEFAULT_ACCEPT_HEADER) -> Dict[str, str]:
        token = await self.get_installation_token(installation_id)
        return self._installation_headers(token.token, accept)

    @staticmethod
    def _split_full_name(full_name: str) -> tuple[str, str]:
        if "/" not in full_name:
            raise ValueError(f"Repository full name '{full_name}' is invalid.")
        owner, repo = full_name.split("/", 1)
        return owner, repo

    async def get_app_login(self) -> str:
        """Return the login GitHub uses for this App's reviews, e.g. ``reviewbot[bot]``."""

        if self._app_slug is None:
            response = await self._request("GET", "/app", headers=self._app_headers())
            slug = response.json().get("slug")
            if not slug:
                raise GitHubAPIError("GitHub did not return an app slug.", response.status_code, None)
            self._app_slug = slug
        return f"{self._app_slug}[bot]"

    async def get_commit_compare(
        self,
        *,
        installation_id: int,
        full_name: str,
        base: str,
        head: str,
    ) -> Dict[str, Any]:
        owner, repo = self._split_full_name(full_name)
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/compare/{base}...{head}",
            headers=await self._headers_for(installation_id),
        )
        return response.json()

    async def get_file_content(
        self,
        *,
        installation_id: int,
        full_name: str,
        path: str,
        ref: str,
    ) -> bytes:
        """Return the raw bytes of ``path`` at ``ref``."""

        owner, repo = self._split_full_name(full_name)
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/contents/{quote(path)}",
            headers=await self._headers_for(installation_id, RAW_ACCEPT_HEADER),
            params={"ref": ref},
        )
        return response.content

    async def get_pull_request(
        self,
        *,
        installation_id: int,
        full_name: str,
        pull_number: int,
    ) -> Dict[str, Any]:
        owner, repo = self._split_full_name(full_name)
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls/{pull_number}",
            headers=await self._headers_for(installation_id),
        )
        return response.json()

    async def get_repository_installation_id(self, *, full_name: str) -> int:
        owner, repo = self._split_full_name(full_name)
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/installation",
            headers=self._app_headers(),
        )
        return int(response.json()["id"])

    async def list_pull_request_comments(
        self,
        *,
        installation_id: int,
        full_name: str,
        pull_number: int,
    ) -> List[Dict[str, Any]]:
        owner, repo = self._split_full_name(full_name)
        return await self._paginate(
            f"/repos/{owner}/{repo}/pulls/{pull_number}/comments",
            headers=await self._headers_for(installation_id),
            what="pull request comments",
        )

    async def create_pull_request_comment(
        self,
        *,
        installation_id: int,
        full_name: str,
        pull_number: int,
        commit_id: str,
        path: str,
        position: int,
        body: str,
    ) -> Dict[str, Any]:
        owner, repo = self._split_full_name(full_name)
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{pull_number}/comments",
            headers=await self._headers_for(installation_id),
            json={"body": body, "commit_id": commit_id, "path": path, "position": position},
        )
        return response.json()

    async def list_pull_request_reviews(
        self,
        *,
        installation_id: int,
        full_name: str,
        pull_number: int,
    ) -> List[Dict[str, Any]]:
        owner, repo = self._split_full_name(full_name)
        return await self._paginate(
            f"/repos/{owner}/{repo}/pulls/{pull_number}/reviews",
            headers=await self._headers_for(installation_id),
            what="pull request reviews",
        )

    async def create_pull_request_review(
        self,
        *,
        installation_id: int,
        full_name: str,
        pull_number: int,
        body: str | None,
        event: str = "COMMENT",
        commit_id: str | None = None,
    ) -> Dict[str, Any]:
        owner, repo = self._split_full_name(full_name)
        payload: Dict[str, Any] = {"event": event}
        if body:
            payload["body"] = body
        if commit_id:
            payload["commit_id"] = commit_id
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{pull_number}/reviews",
            headers=await self._headers_for(installation_id),
            json=payload,
        )
        return response.json()

    async def submit_pull_request_review(
        self,
        *,
        installation_id: int,
        full_name: str,
        pull_number: int,
        review_id: int,
        body: str | None,
        event: str,
    ) -> Dict[str, Any]:
        owner, repo = self._split_full_name(full_name)
        payload: Dict[str, Any] = {"event": event}
        if body:
            payload["body"] = body
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{pull_number}/reviews/{review_id}/events",
            headers=await self._headers_for(installation_id),
            json=payload,
        )
        return response.json()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def _parse_github_timestamp(raw: str) -> datetime:
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw).astimezone(timezone.utc)
