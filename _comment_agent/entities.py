"""
Entities — Gemini Comment Agent

Typed records passed between the stages. Raw JSON (webhook payloads and
GitHub REST responses) is parsed into these once, at the boundary where it
arrives; the pipelines never index into raw dicts.

    Webhook side:  PullRequestCommentEvent | IssueCommentEvent -> CommandInvocation
    GitHub side:   PullRequestDetails, IssueDetails, CommentRecord
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Union

BOT_LOGIN_SUFFIX = "[bot]"


# ---------------------------------------------------------------------------
# WEBHOOK EVENT VARIANTS
# ---------------------------------------------------------------------------
# GitHub sends one issue_comment event shape for both issues and pull
# requests; the presence of issue.pull_request tells them apart. We split
# it into two variants so the dispatcher can route on the type.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _CommentEventFields:
    action: str
    body: str
    commenter: str
    sender_login: str
    sender_type: str
    owner: str
    repo: str
    number: int
    installation_id: Optional[int]

    @property
    def is_from_bot(self) -> bool:
        """
        Best-effort self-detection: GitHub App accounts have type "Bot" and a
        login ending in "[bot]". Another App's comments are skipped too, and a
        changed suffix convention would slip through.
        """
        return self.sender_type == "Bot" and self.sender_login.endswith(BOT_LOGIN_SUFFIX)


@dataclass(frozen=True)
class PullRequestCommentEvent(_CommentEventFields):
    target: Literal["pull_request"] = "pull_request"


@dataclass(frozen=True)
class IssueCommentEvent(_CommentEventFields):
    target: Literal["issue"] = "issue"


CommentEvent = Union[PullRequestCommentEvent, IssueCommentEvent]


@dataclass(frozen=True)
class CommandInvocation:
    """One qualifying command comment, consumed by exactly one pipeline."""

    command: Literal["review", "plan"]
    target_kind: Literal["pull_request", "issue"]
    number: int
    owner: str
    repo: str
    installation_id: int
    requester: str
    persona_hint: Optional[str] = None

    @property
    def full_repo(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def target_label(self) -> str:
        prefix = "PR" if self.target_kind == "pull_request" else "Issue"
        return f"{prefix} #{self.number}"


# ---------------------------------------------------------------------------
# GITHUB REST ENTITIES
# ---------------------------------------------------------------------------


def _login_of(user: Optional[dict]) -> str:
    return (user or {}).get("login") or "unknown"


@dataclass(frozen=True)
class PullRequestDetails:
    number: int
    title: str
    body: Optional[str]
    html_url: str
    head_ref: str
    base_ref: str
    author: str

    @classmethod
    def from_dict(cls, data: dict) -> "PullRequestDetails":
        """Parse a GET /repos/{owner}/{repo}/pulls/{number} response."""
        return cls(
            number=data["number"],
            title=data.get("title") or "",
            body=data.get("body"),
            html_url=data.get("html_url") or "",
            head_ref=data["head"]["ref"],
            base_ref=data["base"]["ref"],
            author=_login_of(data.get("user")),
        )


@dataclass(frozen=True)
class IssueDetails:
    number: int
    title: str
    body: Optional[str]
    html_url: str
    state: str
    author: str
    labels: list = field(default_factory=list)

    @property
    def label_names(self) -> list:
        return [label["name"] for label in self.labels if label.get("name")]

    @classmethod
    def from_dict(cls, data: dict) -> "IssueDetails":
        """Parse a GET /repos/{owner}/{repo}/issues/{number} response."""
        return cls(
            number=data["number"],
            title=data.get("title") or "",
            body=data.get("body"),
            html_url=data.get("html_url") or "",
            state=data.get("state") or "unknown",
            author=_login_of(data.get("user")),
            labels=normalize_labels(data.get("labels")),
        )


@dataclass(frozen=True)
class CommentRecord:
    author: str
    created_at: str
    body: str

    @classmethod
    def from_dict(cls, data: dict) -> "CommentRecord":
        """Parse one element of an issue comment or review comment listing."""
        return cls(
            author=_login_of(data.get("user")),
            created_at=data.get("created_at") or "",
            body=data.get("body") or "",
        )


def normalize_labels(raw_labels: Optional[list]) -> list:
    """
    Bring the issue "labels" field into one shape: a list of {"name": ...}.

    The REST API documents labels as objects, but the field is also allowed
    to hold bare strings, so both are accepted.
    """
    normalized = []
    for label in raw_labels or []:
        if isinstance(label, str):
            normalized.append({"name": label})
        elif isinstance(label, dict):
            normalized.append({"name": label.get("name")})
    return normalized
