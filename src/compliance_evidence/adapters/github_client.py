"""GitHub Actions REST API client.

Provides the read-only queries the source run verifier needs:
- Fetching a workflow run (head commit, conclusion, run number)
- Listing the jobs of a run
- Listing the artifacts uploaded by a run

The client is synchronous and performs no retries or backoff: a failed call
surfaces immediately as a RemoteVerificationError and the whole stage is
re-run by the orchestrator. Tests inject an httpx.Client built on
httpx.MockTransport.

GitHub REST API reference: https://docs.github.com/en/rest/actions
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from compliance_evidence.core.errors import RemoteVerificationError
from compliance_evidence.observability import get_logger

logger = get_logger(__name__)

_DEFAULT_API_URL = "https://api.github.com"
_API_VERSION = "2022-11-28"
_USER_AGENT = "fawa-evidence-verifier"
_PAGE_SIZE = 100


class _ApiModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class WorkflowRunInfo(_ApiModel):
    """Subset of a workflow run resource."""

    head_sha: str
    conclusion: str | None = None
    html_url: str = ""
    run_number: int = 0


class WorkflowJobInfo(_ApiModel):
    """Subset of a workflow job resource."""

    name: str
    status: str = ""
    conclusion: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    html_url: str = ""


class WorkflowArtifactInfo(_ApiModel):
    name: str
    expired: bool = False


class GitHubActionsClient:
    """Synchronous client for the GitHub Actions REST API of one repository.

    Args:
        owner: Repository owner.
        repo: Repository name.
        token: API token. Required for every request.
        api_url: REST API base URL.
        client: Optional pre-built httpx.Client (closed by its creator).
        timeout_s: Request timeout for the client created here.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str | None,
        api_url: str = _DEFAULT_API_URL,
        client: httpx.Client | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._owner = owner
        self._repo = repo
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_s)

    def __enter__(self) -> GitHubActionsClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    @property
    def repository(self) -> str:
        return f"{self._owner}/{self._repo}"

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._token}",
            "X-GitHub-Api-Version": _API_VERSION,
            "User-Agent": _USER_AGENT,
        }

    def _get(self, pathname: str, params: dict[str, Any] | None = None) -> Any:
        """Issue an authenticated GET and return the decoded JSON body.

        Raises:
            RemoteVerificationError: If the token is missing, the request
                fails in transport, or the response is not 2xx.
        """
        if not self._token:
            raise RemoteVerificationError("Missing FALCON_TOKEN environment variable.", field="token")

        url = f"{self._api_url}{pathname}"
        logger.debug("GitHub API request", path=pathname, params=params)
        try:
            response = self._client.get(url, headers=self._headers(), params=params)
        except httpx.RequestError as exc:
            logger.error("GitHub API request failed", path=pathname, error=str(exc))
            raise RemoteVerificationError(f"GitHub API request error for {pathname}: {exc}", field=pathname) from exc

        if not response.is_success:
            logger.error(
                "GitHub API returned unexpected status",
                path=pathname,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise RemoteVerificationError(
                f"GitHub API request failed ({response.status_code}) for {pathname}: {response.text}",
                field=pathname,
            )
        return response.json()

    def _parse(self, model_cls: type[_ApiModel], data: Any, pathname: str) -> Any:
        try:
            return model_cls.model_validate(data)
        except ValidationError as exc:
            raise RemoteVerificationError(
                f"GitHub API returned an unexpected {model_cls.__name__} for {pathname}: {exc.errors()[0]['msg']}",
                field=pathname,
            ) from exc

    def _runs_path(self, run_id: int) -> str:
        return f"/repos/{self._owner}/{self._repo}/actions/runs/{run_id}"

    def get_run(self, run_id: int) -> WorkflowRunInfo:
        """Fetch one workflow run by numeric id."""
        pathname = self._runs_path(run_id)
        return self._parse(WorkflowRunInfo, self._get(pathname), pathname)

    def list_jobs(self, run_id: int) -> list[WorkflowJobInfo]:
        """List the jobs of a workflow run (first page of 100)."""
        pathname = f"{self._runs_path(run_id)}/jobs"
        body = self._get(pathname, params={"per_page": _PAGE_SIZE})
        return [self._parse(WorkflowJobInfo, job, pathname) for job in body.get("jobs") or []]

    def list_artifacts(self, run_id: int) -> list[WorkflowArtifactInfo]:
        """List the artifacts of a workflow run (first page of 100)."""
        pathname = f"{self._runs_path(run_id)}/artifacts"
        body = self._get(pathname, params={"per_page": _PAGE_SIZE})
        return [self._parse(WorkflowArtifactInfo, item, pathname) for item in body.get("artifacts") or []]
