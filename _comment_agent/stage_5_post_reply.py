"""
Stage 5: Post Reply — Gemini Comment Agent

PURPOSE:
    Turn the outcome of a command into the one comment the requester sees,
    and post it:

    IF GENERATION SUCCEEDED:
      - review: the generated review, posted verbatim on the PR
      - plan:   the generated plan under an attribution header naming the
                issue and the requester

    IF ANYTHING WENT WRONG (missing data, Gemini failure, unexpected error):
      - a short status message under an attribution line naming the
        responding role, the requester and, when known, the persona used

CALLED BY:
    comment_pipeline_main.py — at every exit point of both pipelines.

DESIGN DECISIONS:
    - post_reply() lets a failed post raise; the pipeline's top-level handler
      catches it and falls back to a status message.
    - post_status_message() is the last resort. If even that post fails we
      log and give up: there is no other channel to reach the user, and the
      command must not crash the worker thread.
"""

import logging
from typing import Optional

from _comment_agent.entities import CommandInvocation
from _comment_agent.stage_2_fetch_github_context import GitHubAppClient
from _comment_agent.stage_4_gemini_generation import GenerationResult

logger = logging.getLogger(__name__)

ROLE_NAMES = {
    "review": "AI Reviewer",
    "plan": "AI Planner",
}

NO_VALID_CONTENT = {
    "review": "Gemini did not generate a valid review.",
    "plan": "Gemini did not generate a valid plan.",
}


def format_status_message(
    invocation: CommandInvocation,
    message: str,
    persona_name: Optional[str] = None,
) -> str:
    """Prefix a status message with the attribution line for this command."""
    persona_info = f", persona: {persona_name}" if persona_name else ""
    role = ROLE_NAMES[invocation.command]
    return f"**{role}** (requested by @{invocation.requester}{persona_info}):\n{message}"


def format_plan_reply(invocation: CommandInvocation, plan_text: str) -> str:
    return (
        f"**AI planning proposal for Issue #{invocation.number}** "
        f"(requested by @{invocation.requester})\n\n{plan_text}"
    )


def describe_generation_failure(invocation: CommandInvocation, result: GenerationResult) -> str:
    """Explain a failed or empty generation, quoting the Gemini error when there is one."""
    if result.error:
        return f"A Gemini API error occurred: {result.error}"
    return NO_VALID_CONTENT[invocation.command]


def post_reply(client: GitHubAppClient, invocation: CommandInvocation, generated_text: str) -> None:
    """Post a successful generation. Raises if the comment cannot be posted."""
    if invocation.command == "plan":
        body = format_plan_reply(invocation, generated_text)
    else:
        body = generated_text
    client.create_issue_comment(invocation.owner, invocation.repo, invocation.number, body)
    logger.info("Posted %s result to %s", invocation.command, invocation.target_label)


def post_status_message(
    client: GitHubAppClient,
    invocation: CommandInvocation,
    message: str,
    persona_name: Optional[str] = None,
) -> bool:
    """
    Post a status / error message. Never raises.

    Returns:
        True if the comment was posted, False if posting failed.
    """
    body = format_status_message(invocation, message, persona_name)
    try:
        client.create_issue_comment(invocation.owner, invocation.repo, invocation.number, body)
    except Exception:
        logger.exception(
            "Failed to post status message to %s/%s#%s",
            invocation.owner,
            invocation.repo,
            invocation.number,
        )
        return False
    return True
