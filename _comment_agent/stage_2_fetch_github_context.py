"""
Stage 2: Fetch GitHub Context — Gemini Comment Agent

PURPOSE:
    Gather everything the prompt needs from GitHub, under the App installation
    that the webhook came from:

    REVIEW (pull requests):
      1. PR metadata (title, description, branches, author)
      2. PR diff as raw unified-diff text
      3. Existing review comments on the PR's files

    PLAN (issues):
      1. Issue metadata (title, description, labels, state, author)
      2. Existing issue comments

    It also owns the single write operation: posting a comment, which works
    for both issues and pull requests because GitHub addresses both by issue
    number.

CALLED BY:
    comment_pipeline_main.py — creates one GitHubAppClient per command.

AUTHENTICATION:
    A GitHub App cannot call repository endpoints with its own identity. We
    sign a short-lived JWT with the App's private key (RS256, 10 minutes),
    exchange it at POST /app/installations/{id}/access_tokens for an
    installation token (1 hour), and use that token for every call this
    client makes. The token is minted lazily on first use.

DESIGN DECISIONS:
    - A client is bound to exactly one installation id and is never reused
      for another installation. Clients are cheap; create a new one per command.
    - Reads fail soft: any network, HTTP status, auth or parse error is
      logged and turned into None (single entity) or [] (comment listings).
      Missing data is a normal outcome the pipelines report to the user.
    - The write fails hard: create_issue_comment() lets the requests error
      propagate so the caller decides how to report it. A failed post is
      never silently dropped here.
    - Comment listings fetch one page of 100 in GitHub's default order
      (oldest first). Long threads are cut further by the prompt budgets.
"""

import logging
import time
from typing import Optional

import jwt
import requests

from _comment_agent.entities import CommentRecord, IssueDetails, PullRequestDetails

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
REQUEST_TIMEOUT_SECONDS = 30
COMMENTS_PER_PAGE = 100

# Errors a read operation absorbs. Token minting can fail with PyJWTError
# (bad key) or RequestException (GitHub rejects the JWT); response parsing
# can fail with KeyError/TypeError/ValueError.
_READ_ERRORS = (requests.RequestException, jwt.PyJWTError, KeyError, TypeError, ValueError)


# ---------------------------------------------------------------------------
# INSTALLATION AUTHENTICATION
# ---------------------------------------------------------------------------


class InstallationAuth:
    """Mints installation access tokens for one GitHub App installation."""

    def __init__(
        self,
        app_id: str,
        private_key: str,
        installation_id: int,
        api_url: str = GITHUB_API_URL,
    ):
        self.app_id = app_id
        self.private_key = private_key
        self.installation_id = installation_id
        self.api_url = api_url.rstrip("/")

    def app_jwt(self) -> str:
        """Sign the App-level JWT (iat backdated 60s for clock drift)."""
        now = int(time.time())
        payload = {
            "iat": now - 60,
            "exp": now + 10 * 60,
            "iss": str(self.app_id),
        }
        return jwt.encode(payload, self.private_key, algorithm="RS256")

    def fetch_token(self) -> str:
        """Exchange the App JWT for an installation access token."""
        url = f"{self.api_url}/app/installations/{self.installation_id}/access_tokens"
        headers = {
            "Authorization": f"Bearer {self.app_jwt()}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        resp = requests.post(url, headers=headers, timeout=REQUEST_TIMEOUT_SECONDS)
        resp.raise_for_status()
        return resp.json()["token"]


# ---------------------------------------------------------------------------
# REPOSITORY CLIENT
# ---------------------------------------------------------------------------


class GitHubAppClient:
    """
    Installation-scoped wrapper around the GitHub REST endpoints we need.

    Read methods never raise; create_issue_comment() does.
    """

    def __init__(
        self,
        auth: InstallationAuth,
        session: Optional[requests.Session] = None,
    ):
        self.auth = auth
        self.installation_id = auth.installation_id
        self.api_url = auth.api_url
        self.session = session or requests.Session()
        self._token: Optional[str] = None

    # -- reads: pull requests -------------------------------------------------

    def get_pull_request(self, owner: str, repo: str, number: int) -> Optional[PullRequestDetails]:
        try:
            resp = self._get(f"/repos/{owner}/{repo}/pulls/{number}")
            return PullRequestDetails.from_dict(resp.json())
        except _READ_ERRORS as e:
            logger.error("Error fetching PR details for %s/%s#%s: %s", owner, repo, number, e)
            return None

    def get_pull_request_diff(self, owner: str, repo: str, number: int) -> Optional[str]:
        try:
            resp = self._get(
                f"/repos/{owner}/{repo}/pulls/{number}",
                accept="application/vnd.github.diff",
            )
            return resp.text
        except _READ_ERRORS as e:
            logger.error("Error fetching PR diff for %s/%s#%s: %s", owner, repo, number, e)
            return None

    def list_review_comments(self, owner: str, repo: str, number: int) -> list:
        try:
            resp = self._get(
                f"/repos/{owner}/{repo}/pulls/{number}/comments",
                params={"per_page": COMMENTS_PER_PAGE},
            )
            return [CommentRecord.from_dict(item) for item in resp.json()]
        except _READ_ERRORS as e:
            logger.error(
                "Error listing review comments for %s/%s#%s: %s", owner, repo, number, e
            )
            return []

    # -- reads: issues --------------------------------------------------------

    def get_issue(self, owner: str, repo: str, number: int) -> Optional[IssueDetails]:
        try:
            resp = self._get(f"/repos/{owner}/{repo}/issues/{number}")
            return IssueDetails.from_dict(resp.json())
        except _READ_ERRORS as e:
            logger.error("Error fetching issue details for %s/%s#%s: %s", owner, repo, number, e)
            return None

    def list_issue_comments(self, owner: str, repo: str, number: int) -> list:
        try:
            resp = self._get(
                f"/repos/{owner}/{repo}/issues/{number}/comments",
                params={"per_page": COMMENTS_PER_PAGE},
            )
            return [CommentRecord.from_dict(item) for item in resp.json()]
        except _READ_ERRORS as e:
            logger.error(
                "Error listing issue comments for %s/%s#%s: %s", owner, repo, number, e
            )
            return []

    # -- write ----------------------------------------------------------------

    def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> dict:
        """Post a comment on an issue or pull request. Raises on failure."""
        url = f"{self.api_url}/repos/{owner}/{repo}/issues/{number}/comments"
        try:
            resp = self.session.post(
                url,
                headers=self._headers(),
                json={"body": body},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Error creating comment on %s/%s#%s: %s", owner, repo, number, e)
            raise
        logger.info("Comment posted to %s/%s#%s", owner, repo, number)
        return resp.json()

    # -- private --------------------------------------------------------------

    def _headers(self, accept: str = "application/vnd.github+json") -> dict:
        if self._token is None:
            self._token = self.auth.fetch_token()
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": accept,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }

    def _get(
        self,
        path: str,
        params: Optional[dict] = None,
        accept: str = "application/vnd.github+json",
    ) -> requests.Response:
        resp = self.session.get(
            f"{self.api_url}{path}",
            headers=self._headers(accept),
            params=params,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        return resp
