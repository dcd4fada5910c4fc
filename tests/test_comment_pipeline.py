"""Tests for the review and planning pipelines.

Tests cover:
- Happy paths for review and plan (fetches, persona resolution, one comment)
- Missing details / diff (one status comment, no generation)
- Generation errors and empty generations
- Unexpected exceptions and failed posts
- Command routing and the client factory
"""

import unittest
from unittest.mock import MagicMock, patch

import requests

from _comment_agent.comment_pipeline_main import (
    CommentAgent,
    handle_command,
    process_planning_request,
    process_review_request,
)
from _comment_agent.config import BotConfig
from _comment_agent.entities import (
    CommandInvocation,
    CommentRecord,
    IssueDetails,
    PullRequestDetails,
)
from _comment_agent.stage_4_gemini_generation import GenerationResult


def make_config(**overrides):
    values = dict(
        app_id="12345",
        webhook_secret="hook-secret",
        private_key="pem",
        gemini_api_key="gemini-key",
    )
    values.update(overrides)
    return BotConfig(**values)


def make_review_invocation(persona_hint=None, number=42):
    return CommandInvocation(
        command="review",
        target_kind="pull_request",
        number=number,
        owner="octo",
        repo="widgets",
        installation_id=7,
        requester="alice",
        persona_hint=persona_hint,
    )


def make_plan_invocation(number=10):
    return CommandInvocation(
        command="plan",
        target_kind="issue",
        number=number,
        owner="octo",
        repo="widgets",
        installation_id=7,
        requester="alice",
    )


def make_pull_request(number=42):
    return PullRequestDetails(
        number=number,
        title="Add widget cache",
        body="Caches widgets.",
        html_url=f"https://github.com/octo/widgets/pull/{number}",
        head_ref="feature/cache",
        base_ref="main",
        author="bob",
    )


def make_issue(number=10):
    return IssueDetails(
        number=number,
        title="Support dark mode",
        body="Users want dark mode.",
        html_url=f"https://github.com/octo/widgets/issues/{number}",
        state="open",
        author="carol",
        labels=[{"name": "enhancement"}],
    )


def make_agent(client, generation=None, personas=None, **config_overrides):
    """Build a CommentAgent around mocks; client_factory always returns `client`."""
    if personas is None:
        personas = MagicMock()
        personas.get.side_effect = lambda name, fallback="default": f"persona:{name}"
    generator = MagicMock()
    generator.generate.return_value = generation or GenerationResult(text="## Generated", model_used="m")
    return CommentAgent(
        config=make_config(**config_overrides),
        personas=personas,
        generator=generator,
        client_factory=MagicMock(return_value=client),
    )


def make_client():
    client = MagicMock()
    client.get_pull_request.return_value = make_pull_request()
    client.get_pull_request_diff.return_value = "diff --git a/x b/x\n+cache = {}"
    client.list_review_comments.return_value = [
        CommentRecord(author="dave", created_at="2024-05-01T12:00:00Z", body="Nit"),
    ]
    client.get_issue.return_value = make_issue()
    client.list_issue_comments.return_value = []
    return client


def posted_bodies(client):
    return [c[0][3] for c in client.create_issue_comment.call_args_list]


# =============================================================================
# Review pipeline
# =============================================================================


class TestProcessReviewRequest(unittest.TestCase):
    """Tests for process_review_request()."""

    def setUp(self):
        self.client = make_client()

    def test_review_scenario_with_persona(self):
        """Test "!review thorough" on PR #42: fetch, resolve persona, post once."""
        agent = make_agent(self.client)

        outcome = process_review_request(agent, make_review_invocation("thorough"))

        self.assertEqual(outcome, {"success": True, "action_taken": "posted", "persona": "thorough"})
        agent.client_factory.assert_called_once_with(7)
        self.client.get_pull_request.assert_called_once_with("octo", "widgets", 42)
        self.client.get_pull_request_diff.assert_called_once_with("octo", "widgets", 42)
        self.client.list_review_comments.assert_called_once_with("octo", "widgets", 42)
        agent.personas.get.assert_called_once_with("thorough", "default")
        prompt = agent.generator.generate.call_args[0][0]
        self.assertTrue(prompt.startswith("persona:thorough"))
        self.assertIn("Nit", prompt)
        self.client.create_issue_comment.assert_called_once_with("octo", "widgets", 42, "## Generated")

    def test_default_persona_when_no_hint(self):
        """Test that a bare command uses the configured default persona."""
        agent = make_agent(self.client, default_persona="strict")

        outcome = process_review_request(agent, make_review_invocation())

        agent.personas.get.assert_called_once_with("strict", "strict")
        self.assertEqual(outcome["persona"], "strict")

    def test_missing_details_posts_one_comment_without_generation(self):
        """Test that unavailable PR details stop the pipeline."""
        self.client.get_pull_request.return_value = None
        agent = make_agent(self.client)

        outcome = process_review_request(agent, make_review_invocation())

        self.assertEqual(outcome["action_taken"], "details_unavailable")
        bodies = posted_bodies(self.client)
        self.assertEqual(len(bodies), 1)
        self.assertIn("details could not be retrieved", bodies[0])
        agent.generator.generate.assert_not_called()
        self.client.get_pull_request_diff.assert_not_called()

    def test_missing_diff_posts_one_comment_without_generation(self):
        """Test that an unavailable diff stops the pipeline."""
        self.client.get_pull_request_diff.return_value = None
        agent = make_agent(self.client)

        outcome = process_review_request(agent, make_review_invocation())

        self.assertEqual(outcome["action_taken"], "diff_unavailable")
        bodies = posted_bodies(self.client)
        self.assertEqual(len(bodies), 1)
        self.assertIn("PR #42 diff could not be retrieved.", bodies[0])
        agent.generator.generate.assert_not_called()

    def test_empty_diff_counts_as_unavailable(self):
        """Test that an empty diff is treated like a failed fetch."""
        self.client.get_pull_request_diff.return_value = ""
        agent = make_agent(self.client)

        outcome = process_review_request(agent, make_review_invocation())

        self.assertEqual(outcome["action_taken"], "diff_unavailable")
        agent.generator.generate.assert_not_called()

    def test_generation_error_is_quoted_not_posted_as_review(self):
        """Test that an error result is reported, never posted as the review."""
        error = "Error: Gemini API request failed.\n```\nquota exceeded\n```"
        agent = make_agent(self.client, generation=GenerationResult(text="", error=error))

        with self.assertLogs("_comment_agent.comment_pipeline_main", level="WARNING"):
            outcome = process_review_request(agent, make_review_invocation("thorough"))

        self.assertEqual(outcome["action_taken"], "generation_failed")
        self.assertFalse(outcome["success"])
        bodies = posted_bodies(self.client)
        self.assertEqual(len(bodies), 1)
        self.assertTrue(bodies[0].startswith("**AI Reviewer** (requested by @alice, persona: thorough):"))
        self.assertIn(f"A Gemini API error occurred: {error}", bodies[0])
        self.assertNotEqual(bodies[0], error)

    def test_empty_generation_reports_no_valid_review(self):
        """Test that an empty answer is reported as no valid review."""
        agent = make_agent(self.client, generation=GenerationResult(text=""))

        with self.assertLogs("_comment_agent.comment_pipeline_main", level="WARNING"):
            process_review_request(agent, make_review_invocation())

        self.assertIn("Gemini did not generate a valid review.", posted_bodies(self.client)[0])

    def test_unexpected_exception_posts_generic_comment(self):
        """Test that any exception becomes one generic failure comment."""
        self.client.list_review_comments.side_effect = RuntimeError("kaboom")
        agent = make_agent(self.client)

        with self.assertLogs("_comment_agent.comment_pipeline_main", level="ERROR"):
            outcome = process_review_request(agent, make_review_invocation())

        self.assertEqual(outcome["action_taken"], "unexpected_error")
        bodies = posted_bodies(self.client)
        self.assertEqual(len(bodies), 1)
        self.assertIn("An unexpected error occurred while processing the review: kaboom", bodies[0])

    def test_failed_review_post_falls_back_to_status_message(self):
        """Test that a failed success post is reported with one more attempt."""
        self.client.create_issue_comment.side_effect = [requests.HTTPError("502"), {"id": 1}]
        agent = make_agent(self.client)

        with self.assertLogs("_comment_agent.comment_pipeline_main", level="ERROR"):
            outcome = process_review_request(agent, make_review_invocation())

        self.assertEqual(outcome["action_taken"], "unexpected_error")
        self.assertEqual(self.client.create_issue_comment.call_count, 2)
        self.assertIn("An unexpected error occurred", posted_bodies(self.client)[1])

    def test_all_posts_failing_never_raises(self):
        """Test that a pipeline whose every post fails still returns."""
        self.client.create_issue_comment.side_effect = requests.ConnectionError("down")
        agent = make_agent(self.client)

        with self.assertLogs(level="ERROR"):
            outcome = process_review_request(agent, make_review_invocation())

        self.assertFalse(outcome["success"])

    def test_client_factory_failure_posts_nothing(self):
        """Test that without a client there is no comment to post."""
        agent = make_agent(self.client)
        agent.client_factory.side_effect = RuntimeError("bad key")

        with self.assertLogs("_comment_agent.comment_pipeline_main", level="ERROR"):
            outcome = process_review_request(agent, make_review_invocation())

        self.assertEqual(outcome["action_taken"], "unexpected_error")
        self.client.create_issue_comment.assert_not_called()


# =============================================================================
# Planning pipeline
# =============================================================================


class TestProcessPlanningRequest(unittest.TestCase):
    """Tests for process_planning_request()."""

    def setUp(self):
        self.client = make_client()

    def test_plan_scenario(self):
        """Test "!plan" on Issue #10: fetch issue and comments, post one prefixed comment."""
        agent = make_agent(self.client, generation=GenerationResult(text="1. Build it"))

        outcome = process_planning_request(agent, make_plan_invocation())

        self.assertEqual(outcome, {"success": True, "action_taken": "posted", "persona": "planning-default"})
        self.client.get_issue.assert_called_once_with("octo", "widgets", 10)
        self.client.list_issue_comments.assert_called_once_with("octo", "widgets", 10)
        agent.personas.get.assert_called_once_with("planning-default", "default")
        self.client.get_pull_request.assert_not_called()
        bodies = posted_bodies(self.client)
        self.assertEqual(len(bodies), 1)
        self.assertTrue(bodies[0].startswith("**AI planning proposal for Issue #10** (requested by @alice)"))
        self.assertTrue(bodies[0].endswith("1. Build it"))

    def test_missing_issue_aborts_planning(self):
        """Test that unavailable issue details stop the pipeline."""
        self.client.get_issue.return_value = None
        agent = make_agent(self.client)

        outcome = process_planning_request(agent, make_plan_invocation())

        self.assertEqual(outcome["action_taken"], "details_unavailable")
        bodies = posted_bodies(self.client)
        self.assertEqual(len(bodies), 1)
        self.assertIn("Issue #10 details could not be retrieved. Planning aborted.", bodies[0])
        self.assertTrue(bodies[0].startswith("**AI Planner**"))
        agent.generator.generate.assert_not_called()

    def test_generation_error_is_reported(self):
        """Test that a planning error result is quoted with the planner role."""
        agent = make_agent(self.client, generation=GenerationResult(text="", error="Error: boom"))

        with self.assertLogs("_comment_agent.comment_pipeline_main", level="WARNING"):
            outcome = process_planning_request(agent, make_plan_invocation())

        self.assertEqual(outcome["action_taken"], "generation_failed")
        body = posted_bodies(self.client)[0]
        self.assertIn("persona: planning-default", body)
        self.assertIn("A Gemini API error occurred: Error: boom", body)

    def test_unexpected_exception_posts_generic_comment(self):
        """Test that planning exceptions become one generic comment."""
        agent = make_agent(self.client)
        agent.generator.generate.side_effect = RuntimeError("kaboom")

        with self.assertLogs("_comment_agent.comment_pipeline_main", level="ERROR"):
            outcome = process_planning_request(agent, make_plan_invocation())

        self.assertEqual(outcome["action_taken"], "unexpected_error")
        self.assertIn("An unexpected error occurred while planning: kaboom", posted_bodies(self.client)[0])


# =============================================================================
# Routing and wiring
# =============================================================================


class TestHandleCommand(unittest.TestCase):
    """Tests for handle_command() and CommentAgent.from_config()."""

    @patch("_comment_agent.comment_pipeline_main.process_review_request")
    @patch("_comment_agent.comment_pipeline_main.process_planning_request")
    def test_routes_by_command(self, mock_plan, mock_review):
        """Test that each command reaches its own pipeline."""
        agent = MagicMock()

        handle_command(agent, make_review_invocation())
        handle_command(agent, make_plan_invocation())

        mock_review.assert_called_once()
        mock_plan.assert_called_once()

    def test_from_config_builds_installation_scoped_clients(self):
        """Test that the client factory binds the installation id."""
        agent = CommentAgent.from_config(make_config(), MagicMock(), MagicMock())

        client = agent.client_factory(99)

        self.assertEqual(client.installation_id, 99)
        self.assertEqual(client.auth.app_id, "12345")
        self.assertIsNot(agent.client_factory(99), client)


if __name__ == "__main__":
    unittest.main()
