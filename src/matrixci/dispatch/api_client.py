# dispatch/api_client.py
from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request
from typing import Optional
from urllib.parse import quote, urljoin

from .models import CommitStatus, DispatchEvent


class APIError(Exception):
    """Raised when API requests fail."""
    pass


class GitHubClient:
    """HTTP client for the GitHub REST endpoints the dispatcher needs."""

    def __init__(self, token: str, base_url: str = "https://api.github.com", timeout: float = 30.0):
        """
        Initialize API client.

        Args:
            token: Token with permission to create dispatch events and statuses
            base_url: Base URL of the API (GitHub Enterprise installs differ)
            timeout: Socket timeout per request in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        """
        Make an HTTP request to the API.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: API path (e.g., "/repos/o/r/dispatches")
            data: Optional JSON data to send in request body
            headers: Optional additional headers

        Returns:
            Parsed JSON response as dictionary ({} for empty bodies)

        Raises:
            APIError: If the request fails
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))

        req_headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        if headers:
            req_headers.update(headers)

        req_data = None
        if data is not None:
            req_data = json.dumps(data).encode("utf-8")

        req = urllib.request.Request(url, data=req_data, headers=req_headers, method=method)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response_data = response.read().decode("utf-8")
                if response_data:
                    return json.loads(response_data)
                # dispatches answers 204 No Content
                return {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"API request failed: {e.code} {e.reason}. {error_body}".strip())
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")
        except (OSError, http.client.HTTPException) as e:
            # dropped connections and read timeouts bypass URLError
            raise APIError(f"Connection error: {e.__class__.__name__}: {e}")

    def create_dispatch_event(self, event: DispatchEvent) -> None:
        self._request(
            "POST",
            f"/repos/{quote(event.owner)}/{quote(event.repo)}/dispatches",
            data=event.body(),
        )

    def create_commit_status(self, status: CommitStatus) -> dict:
        return self._request(
            "POST",
            f"/repos/{quote(status.owner)}/{quote(status.repo)}/statuses/{quote(status.sha)}",
            data=status.body(),
        )
