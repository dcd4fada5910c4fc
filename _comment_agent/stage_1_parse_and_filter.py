"""
Stage 1: Parse & Filter — Gemini Comment Agent

PURPOSE:
    This is the first stage of every command. It takes the raw JSON body of an
    issue_comment webhook and decides whether it is a command we should act
    on. If it is, it returns a CommandInvocation; otherwise it returns None
    and nothing else runs.

    Like any gatekeeper, it is cheap: pure Python, no API calls. Every
    comment on every repository the App is installed on passes through here,
    and almost all of them are ignored.

CALLED BY:
    webhook_server.py — the /webhook route, after signature verification.

RULES (checked in order, first non-match stops):
    1. action must be "created" (edits and deletions are ignored)
    2. the sender must not be a bot account (see is_from_bot)
    3. a pull request comment only recognizes the review command;
       an issue comment only recognizes the plan command
    4. the trimmed body must start with that command
    5. the event must carry installation.id; without it there is no
       authenticated way to answer, so we log and drop the command

DESIGN DECISIONS:
    - The payload is parsed into a PullRequestCommentEvent or IssueCommentEvent
      once (parse_comment_event); the filter rules then work on typed fields.
    - Prefix matching is a plain startswith on the trimmed body, so
      "!reviewer" also matches "!review". That keeps command syntax forgiving.
    - For the review command, the second whitespace-separated token is a
      persona hint ("!review thorough"). The plan command takes no argument.
"""

import logging
from typing import Optional

from _comment_agent.entities import (
    CommandInvocation,
    CommentEvent,
    IssueCommentEvent,
    PullRequestCommentEvent,
)

logger = logging.getLogger(__name__)


def parse_and_filter_comment_event(
    payload: dict,
    review_command: str,
    plan_command: str,
) -> Optional[CommandInvocation]:
    """
    Turn an issue_comment webhook payload into a CommandInvocation, or None.

    This is the main public function in this file. It applies the rules from
    the module docstring in order and short-circuits on the first failure.

    Args:
        payload: Parsed JSON body of the issue_comment webhook delivery.
        review_command: Prefix recognized on pull request comments (e.g. "!review").
        plan_command: Prefix recognized on issue comments (e.g. "!plan").

    Returns:
        A CommandInvocation for the matching pipeline, or None when the
        comment is not a command we act on.
    """
    event = parse_comment_event(payload)
    if event is None:
        return None

    # -----------------------------------------------------------------------
    # RULE 1: Only newly created comments
    # -----------------------------------------------------------------------

    if event.action != "created":
        logger.debug("Ignoring issue_comment action %r", event.action)
        return None

    # -----------------------------------------------------------------------
    # RULE 2: Never react to bot comments (including our own replies)
    # -----------------------------------------------------------------------

    if event.is_from_bot:
        logger.info("Ignoring comment from bot account @%s", event.sender_login)
        return None

    # -----------------------------------------------------------------------
    # RULE 3/4: Route on the comment target, then match the prefix
    # -----------------------------------------------------------------------

    body = event.body.strip()
    if isinstance(event, PullRequestCommentEvent):
        command = "review"
        prefix = review_command
    else:
        command = "plan"
        prefix = plan_command

    if not body.startswith(prefix):
        return None

    # -----------------------------------------------------------------------
    # RULE 5: An installation id is required to answer at all
    # -----------------------------------------------------------------------

    if event.installation_id is None:
        logger.error(
            "Installation ID not found in payload for %s command on %s/%s#%s",
            prefix,
            event.owner,
            event.repo,
            event.number,
        )
        return None

    persona_hint = None
    if command == "review":
        parts = body.split()
        if len(parts) > 1:
            persona_hint = parts[1]

    invocation = CommandInvocation(
        command=command,
        target_kind=event.target,
        number=event.number,
        owner=event.owner,
        repo=event.repo,
        installation_id=event.installation_id,
        requester=event.commenter,
        persona_hint=persona_hint,
    )
    logger.info(
        "%s command detected on %s/%s#%s by @%s (persona hint: %s)",
        prefix,
        invocation.owner,
        invocation.repo,
        invocation.number,
        invocation.requester,
        persona_hint,
    )
    return invocation


def parse_comment_event(payload: dict) -> Optional[CommentEvent]:
    """
    Parse an issue_comment payload into its pull request or issue variant.

    Returns None (after logging) when the payload has no "issue" object or is
    missing the fields every comment event carries.
    """
    issue = payload.get("issue")
    if not isinstance(issue, dict):
        logger.warning(
            "Received issue_comment event for an unknown entity (neither PR nor issue)"
        )
        return None

    try:
        comment = payload["comment"]
        repository = payload["repository"]
        sender = payload.get("sender") or {}
        fields = dict(
            action=payload.get("action") or "",
            body=comment.get("body") or "",
            commenter=(comment.get("user") or {}).get("login") or "unknown",
            sender_login=sender.get("login") or "",
            sender_type=sender.get("type") or "",
            owner=repository["owner"]["login"],
            repo=repository["name"],
            number=int(issue["number"]),
            installation_id=_installation_id_of(payload),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.warning("Malformed issue_comment payload: %s", e)
        return None

    if issue.get("pull_request"):
        return PullRequestCommentEvent(**fields)
    return IssueCommentEvent(**fields)


# ---------------------------------------------------------------------------
# HELPER FUNCTIONS (private to this module)
# ---------------------------------------------------------------------------


def _installation_id_of(payload: dict) -> Optional[int]:
    installation = payload.get("installation") or {}
    installation_id = installation.get("id")
    if installation_id is None:
        return None
    return int(installation_id)
