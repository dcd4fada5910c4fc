"""
Comment Pipelines — Gemini Comment Agent

PURPOSE:
    Run one command from start to finish: fetch context, build the prompt,
    call Gemini, post the answer. There are two pipelines:

    REVIEW (process_review_request), for "!review [persona]" on a PR:
      1. Fetch PR details          -> missing: post "details could not be retrieved", stop
      2. Fetch PR diff             -> missing/empty: post "diff could not be retrieved", stop
      3. Fetch review comments     (empty on failure; not fatal)
      4. Resolve persona           (hint -> DEFAULT_PERSONA -> built-in)
      5. Build prompt              (Stage 3)
      6. Generate                  (Stage 4)
      7. Post review verbatim, or a failure message naming the persona

    PLAN (process_planning_request), for "!plan" on an issue:
      1. Fetch issue details       -> missing: post "details could not be retrieved", stop
      2. Fetch issue comments      (empty on failure; not fatal)
      3. Resolve persona           (PLANNING_PERSONA -> DEFAULT_PERSONA -> built-in)
      4. Build prompt              (Stage 3)
      5. Generate                  (Stage 4)
      6. Post plan under an attribution header, or a failure message

CALLED BY:
    webhook_server.spawn_command() — on a background thread, fire-and-forget.

DESIGN DECISIONS:
    - Each pipeline is its own error boundary. Any exception is caught at
      the top, logged with its traceback, and reported as one generic
      failure comment. Nothing propagates out: the caller has already
      answered the webhook and has no one to report to.
    - Every exit posts at most one comment (the success reply or one status
      message). Nothing is retried.
    - A fresh GitHubAppClient is created per command, scoped to the
      command's installation id.

RETURNS:
    A dict with keys:
        - 'success' (bool): whether the generated answer was posted
        - 'action_taken' (str): 'posted', 'details_unavailable',
          'diff_unavailable', 'generation_failed' or 'unexpected_error'
        - 'persona' (str or None): persona key used for the prompt
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from _comment_agent.config import BotConfig
from _comment_agent.entities import CommandInvocation
from _comment_agent.persona_store import PersonaStore
from _comment_agent.stage_2_fetch_github_context import GitHubAppClient, InstallationAuth
from _comment_agent.stage_3_build_prompt import build_planning_prompt, build_review_prompt
from _comment_agent.stage_4_gemini_generation import GeminiGenerator
from _comment_agent.stage_5_post_reply import (
    describe_generation_failure,
    post_reply,
    post_status_message,
)

logger = logging.getLogger(__name__)


@dataclass
class CommentAgent:
    """The long-lived collaborators every command shares."""

    config: BotConfig
    personas: PersonaStore
    generator: GeminiGenerator
    client_factory: Callable[[int], GitHubAppClient]

    @classmethod
    def from_config(
        cls,
        config: BotConfig,
        personas: PersonaStore,
        generator: GeminiGenerator,
    ) -> "CommentAgent":
        def client_factory(installation_id: int) -> GitHubAppClient:
            return GitHubAppClient(
                InstallationAuth(config.app_id, config.private_key, installation_id)
            )

        return cls(
            config=config,
            personas=personas,
            generator=generator,
            client_factory=client_factory,
        )


def handle_command(agent: CommentAgent, invocation: CommandInvocation) -> dict:
    """Route an invocation to the pipeline for its command."""
    if invocation.command == "review":
        return process_review_request(agent, invocation)
    return process_planning_request(agent, invocation)


def process_review_request(agent: CommentAgent, invocation: CommandInvocation) -> dict:
    """Answer one "!review" command on a pull request. Never raises."""
    owner, repo, number = invocation.owner, invocation.repo, invocation.number
    logger.info(
        "Processing review for %s#%s by @%s (requested persona: %s)",
        invocation.full_repo,
        number,
        invocation.requester,
        invocation.persona_hint,
    )

    client = None
    try:
        client = agent.client_factory(invocation.installation_id)

        # -------------------------------------------------------------------
        # STEP 1-3: Fetch PR details, diff and existing review comments
        # -------------------------------------------------------------------

        pull_request = client.get_pull_request(owner, repo, number)
        if pull_request is None:
            post_status_message(
                client, invocation, f"{invocation.target_label} details could not be retrieved."
            )
            return _outcome(False, "details_unavailable")

        diff = client.get_pull_request_diff(owner, repo, number)
        if not diff:
            post_status_message(
                client, invocation, f"{invocation.target_label} diff could not be retrieved."
            )
            return _outcome(False, "diff_unavailable")

        comments = client.list_review_comments(owner, repo, number)

        # -------------------------------------------------------------------
        # STEP 4-5: Resolve persona and build the prompt
        # -------------------------------------------------------------------

        default_persona = agent.config.default_persona
        persona_name = invocation.persona_hint or default_persona
        persona_prompt = agent.personas.get(persona_name, default_persona)
        prompt = build_review_prompt(persona_prompt, pull_request, diff, comments, invocation)

        # -------------------------------------------------------------------
        # STEP 6-7: Generate and post
        # -------------------------------------------------------------------

        logger.info("Requesting review from Gemini for %s (persona: %s)", pull_request.html_url, persona_name)
        result = agent.generator.generate(prompt)

        if not result.ok:
            message = describe_generation_failure(invocation, result)
            logger.warning("Review for %s#%s not generated: %s", invocation.full_repo, number, message)
            post_status_message(client, invocation, message, persona_name)
            return _outcome(False, "generation_failed", persona_name)

        post_reply(client, invocation, result.text)
        return _outcome(True, "posted", persona_name)

    except Exception as e:
        logger.exception("Unexpected error while processing review for %s#%s", invocation.full_repo, number)
        if client is not None:
            post_status_message(
                client,
                invocation,
                f"An unexpected error occurred while processing the review: {e}",
            )
        return _outcome(False, "unexpected_error")


def process_planning_request(agent: CommentAgent, invocation: CommandInvocation) -> dict:
    """Answer one "!plan" command on an issue. Never raises."""
    owner, repo, number = invocation.owner, invocation.repo, invocation.number
    logger.info("Processing planning request for %s#%s by @%s", invocation.full_repo, number, invocation.requester)

    client = None
    try:
        client = agent.client_factory(invocation.installation_id)

        issue = client.get_issue(owner, repo, number)
        if issue is None:
            post_status_message(
                client,
                invocation,
                f"{invocation.target_label} details could not be retrieved. Planning aborted.",
            )
            return _outcome(False, "details_unavailable")

        comments = client.list_issue_comments(owner, repo, number)

        persona_name = agent.config.planning_persona
        persona_prompt = agent.personas.get(persona_name, agent.config.default_persona)
        prompt = build_planning_prompt(persona_prompt, issue, comments, invocation.requester)

        logger.info("Requesting plan from Gemini for %s", issue.html_url)
        result = agent.generator.generate(prompt)

        if not result.ok:
            message = describe_generation_failure(invocation, result)
            logger.warning("Plan for %s#%s not generated: %s", invocation.full_repo, number, message)
            post_status_message(client, invocation, message, persona_name)
            return _outcome(False, "generation_failed", persona_name)

        post_reply(client, invocation, result.text)
        return _outcome(True, "posted", persona_name)

    except Exception as e:
        logger.exception("Unexpected error while planning %s#%s", invocation.full_repo, number)
        if client is not None:
            post_status_message(
                client,
                invocation,
                f"An unexpected error occurred while planning: {e}",
            )
        return _outcome(False, "unexpected_error")


# ---------------------------------------------------------------------------
# PRIVATE HELPER FUNCTIONS
# ---------------------------------------------------------------------------


def _outcome(success: bool, action_taken: str, persona: Optional[str] = None) -> dict:
    return {"success": success, "action_taken": action_taken, "persona": persona}
