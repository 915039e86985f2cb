from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import httpx

from teamsync.pagination import paginate
from teamsync.tokens import GitHubTokens

API_BASE = "https://api.github.com/"
USER_AGENT = "teamsync (https://github.com/rust-lang/sync-team)"


# =============================================================================
# Errors
# =============================================================================


class GitHubError(RuntimeError):
    """A request to GitHub failed or returned something we can't use."""

    def __init__(self, message: str, *, status: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status = status
        self.url = url


class GraphQLError(GitHubError):
    def __init__(self, message: str, *, type_: str | None = None, url: str | None = None):
        super().__init__(f"graphql error: {message}", url=url)
        self.type = type_


class UnresolvedUserError(GitHubError):
    def __init__(self, user_id: int, cause: Exception):
        super().__init__(
            f"failed to resolve user id {user_id}: {cause}\n"
            "Check if the user has possibly deleted their account."
        )
        self.user_id = user_id


# =============================================================================
# URLs
# =============================================================================


@dataclass(frozen=True)
class GitHubUrl:
    """
    A URL to a GitHub API endpoint, together with the org whose token must be
    used for it.
    """

    url: str
    org: str | None

    @staticmethod
    def new(url: str, org: str | None, *, base: str = API_BASE) -> GitHubUrl:
        if not url.startswith("https://") and not url.startswith("http://"):
            url = base.rstrip("/") + "/" + url
        return GitHubUrl(url, org)

    @staticmethod
    def orgs(org: str, endpoint: str, *, base: str = API_BASE) -> GitHubUrl:
        _validate_endpoint(endpoint)
        return GitHubUrl.new(f"orgs/{org}/{endpoint}", org, base=base)

    @staticmethod
    def repos(org: str, repo: str, endpoint: str = "", *, base: str = API_BASE) -> GitHubUrl:
        if endpoint:
            _validate_endpoint(endpoint)
            endpoint = "/" + endpoint
        return GitHubUrl.new(f"repos/{org}/{repo}{endpoint}", org, base=base)


def _validate_endpoint(endpoint: str) -> None:
    if endpoint.startswith("/"):
        raise ValueError(f"endpoint {endpoint!r} should not start with a slash")


# =============================================================================
# HTTP Client
# =============================================================================


class HttpClient:
    def __init__(
        self,
        tokens: GitHubTokens,
        *,
        base_url: str = API_BASE,
        timeout_s: int = 30,
        transport: httpx.BaseTransport | None = None,
    ):
        self.tokens = tokens
        self.base_url = base_url
        self._client = httpx.Client(
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "application/vnd.github+json",
            },
            timeout=timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def url(self, path: str, org: str | None) -> GitHubUrl:
        return GitHubUrl.new(path, org, base=self.base_url)

    def orgs_url(self, org: str, endpoint: str) -> GitHubUrl:
        return GitHubUrl.orgs(org, endpoint, base=self.base_url)

    def repos_url(self, org: str, repo: str, endpoint: str = "") -> GitHubUrl:
        return GitHubUrl.repos(org, repo, endpoint, base=self.base_url)

    def _request(self, method: str, url: GitHubUrl, payload: Any = None) -> httpx.Response:
        headers = {"Authorization": f"token {self.tokens.get_token(url.org)}"}
        try:
            return self._client.request(method, url.url, headers=headers, json=payload)
        except httpx.RequestError as exc:
            raise GitHubError(f"Network error calling {method} {url.url}: {exc}", url=url.url) from exc

    def _check(self, method: str, url: GitHubUrl, resp: httpx.Response) -> httpx.Response:
        if resp.is_success:
            return resp
        raise GitHubError(
            f"HTTP {resp.status_code} from {method} {url.url}: {resp.text}",
            status=resp.status_code,
            url=url.url,
        )

    def _json(self, method: str, url: GitHubUrl, resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except json.JSONDecodeError as exc:
            raise GitHubError(
                f"Non-JSON response from {method} {url.url}: {resp.text[:200]}", url=url.url
            ) from exc

    def send(self, method: str, url: GitHubUrl, payload: Any = None) -> Any:
        """Send a request and decode the JSON body, if there is one."""
        resp = self._check(method, url, self._request(method, url, payload))
        if not resp.content:
            return None
        return self._json(method, url, resp)

    def send_option(self, method: str, url: GitHubUrl) -> Any | None:
        """Like `send`, but a 404 is returned as None."""
        resp = self._request(method, url)
        if resp.status_code == 404:
            return None
        self._check(method, url, resp)
        return self._json(method, url, resp)

    def send_allow_not_found(self, method: str, url: GitHubUrl) -> None:
        """Send a request where a 404 means the desired end state is already reached."""
        resp = self._request(method, url)
        if resp.status_code == 404:
            return
        self._check(method, url, resp)

    def rest_paginated(self, url: GitHubUrl) -> Iterator[Any]:
        """
        Yield the decoded JSON body of each page, following the rel="next"
        links of the Link response header.
        """

        def fetch_page(cursor: GitHubUrl | None):
            page_url = cursor or url
            resp = self._check("GET", page_url, self._request("GET", page_url))
            next_link = resp.links.get("next", {}).get("url")
            next_url = None
            if next_link:
                next_url = GitHubUrl.new(next_link, page_url.org, base=self.base_url)
            return [self._json("GET", page_url, resp)], next_url

        return paginate(fetch_page)

    def _graphql_response(self, query: str, variables: dict[str, Any], org: str | None) -> dict[str, Any]:
        url = self.url("graphql", org)
        resp = self._check("POST", url, self._request("POST", url, {"query": query, "variables": variables}))
        body = self._json("POST", url, resp)
        if not isinstance(body, dict):
            raise GitHubError(f"Unexpected graphql response: {body!r}", url=url.url)
        return body

    def graphql(self, query: str, variables: dict[str, Any], org: str | None = None) -> Any:
        body = self._graphql_response(query, variables, org)
        errors = body.get("errors") or []
        if errors:
            error = errors[0]
            raise GraphQLError(error.get("message", "unknown error"), type_=error.get("type"))
        if body.get("data") is None:
            raise GitHubError("missing graphql data")
        return body["data"]

    def graphql_opt(self, query: str, variables: dict[str, Any], org: str | None = None) -> Any | None:
        """Like `graphql`, but a NOT_FOUND error is returned as None."""
        body = self._graphql_response(query, variables, org)
        errors = body.get("errors") or []
        if errors:
            error = errors[0]
            if error.get("type") == "NOT_FOUND":
                return None
            raise GraphQLError(error.get("message", "unknown error"), type_=error.get("type"))
        if body.get("data") is None:
            raise GitHubError("missing graphql data")
        return body["data"]
