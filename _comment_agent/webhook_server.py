"""
Webhook Server — Gemini Comment Agent

PURPOSE:
    The process entry point and the App's only inbound interface. GitHub
    delivers issue_comment webhooks to POST /webhook; we verify the
    signature, let Stage 1 decide whether the comment is a command, and
    hand qualifying commands to a background thread.

ROUTES:
    GET  /         health check (plain text)
    POST /webhook  GitHub webhook deliveries

    Responses to POST /webhook:
        401  signature missing or wrong
        400  body is not a JSON object
        200  {"status": "pong"}      ping event (sent when the App is installed)
        200  {"status": "ignored"}   any other event, or a comment that is not a command
        202  {"status": "accepted"}  command handed to a background thread

DESIGN DECISIONS:
    - Fire-and-forget: the route returns as soon as the thread is started.
      GitHub expects an answer within 10 seconds, and a review can take far
      longer. GitHub therefore never sees pipeline failures; users see them
      as a follow-up comment, operators as a log line.
    - One daemon thread per command. There is no queue, no de-duplication
      and no cancellation: a redelivered webhook produces a second reply, and
      a hung Gemini call only blocks its own thread.
    - The thread target is its own error boundary on top of the pipeline's,
      so an exception can never escape into the thread machinery unlogged.

USAGE:
    comment-agent            (console script)
    python -m _comment_agent
"""

import hashlib
import hmac
import logging
import sys
import threading
from typing import Callable, Optional

from flask import Flask, jsonify, request

from _comment_agent.comment_pipeline_main import CommentAgent, handle_command
from _comment_agent.config import ConfigError, load_config
from _comment_agent.entities import CommandInvocation
from _comment_agent.persona_store import PersonaStore
from _comment_agent.stage_1_parse_and_filter import parse_and_filter_comment_event
from _comment_agent.stage_4_gemini_generation import GeminiGenerator

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
SIGNATURE_HEADER = "X-Hub-Signature-256"

Spawner = Callable[[CommentAgent, CommandInvocation], object]


def create_app(
    agent: CommentAgent,
    webhook_secret: str,
    spawn: Optional[Spawner] = None,
) -> Flask:
    """
    Build the Flask app.

    Args:
        agent: Shared collaborators for the pipelines.
        webhook_secret: Secret configured on the GitHub App's webhook.
        spawn: Starts a command without waiting for it. Defaults to
               spawn_command (a daemon thread per command).
    """
    spawn = spawn or spawn_command
    app = Flask(__name__)

    @app.get("/")
    def index():
        return "GitHub AI Reviewer & Planner is running!"

    @app.post("/webhook")
    def webhook():
        delivery_id = request.headers.get("X-GitHub-Delivery", "unknown")
        if not verify_webhook_signature(
            request.get_data(), request.headers.get(SIGNATURE_HEADER), webhook_secret
        ):
            logger.warning("Invalid webhook signature (delivery %s)", delivery_id)
            return jsonify({"error": "Invalid signature"}), 401

        event_name = request.headers.get("X-GitHub-Event", "")
        if event_name == "ping":
            return jsonify({"status": "pong"})
        if event_name != "issue_comment":
            logger.debug("Ignoring %r event (delivery %s)", event_name, delivery_id)
            return jsonify({"status": "ignored"})

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "Invalid JSON payload"}), 400

        invocation = parse_and_filter_comment_event(
            payload,
            review_command=agent.config.review_command,
            plan_command=agent.config.plan_command,
        )
        if invocation is None:
            return jsonify({"status": "ignored"})

        logger.info(
            "Dispatching %s command for %s (delivery %s)",
            invocation.command,
            invocation.target_label,
            delivery_id,
        )
        spawn(agent, invocation)
        return jsonify({"status": "accepted"}), 202

    return app


def verify_webhook_signature(payload: bytes, signature_header: Optional[str], secret: str) -> bool:
    """
    Check GitHub's "sha256=<hex hmac>" signature of the raw request body.

    Fails closed: no secret or no header means the delivery is rejected.
    """
    if not secret or not signature_header:
        return False
    algorithm, _, signature = signature_header.partition("=")
    if algorithm != "sha256" or not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), msg=payload, digestmod=hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def spawn_command(agent: CommentAgent, invocation: CommandInvocation) -> threading.Thread:
    """Start the pipeline for a command on a daemon thread and return immediately."""
    thread = threading.Thread(
        target=_run_command,
        args=(agent, invocation),
        name=f"{invocation.command}-{invocation.full_repo}#{invocation.number}",
        daemon=True,
    )
    thread.start()
    return thread


def main() -> None:
    """Load config and personas, then serve webhooks until interrupted."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    try:
        config = load_config()
    except ConfigError as e:
        logger.error("Refusing to start: %s", e)
        sys.exit(1)
    logging.getLogger().setLevel(config.log_level)

    personas = PersonaStore(config.personas_dir)
    personas.load()

    generator = GeminiGenerator(
        api_key=config.gemini_api_key,
        model_name=config.gemini_model_name,
        max_output_tokens=config.gemini_max_output_tokens,
        temperature=config.gemini_temperature,
    )
    agent = CommentAgent.from_config(config, personas, generator)
    app = create_app(agent, config.webhook_secret)

    logger.info("Server starting on port %s (webhook endpoint: /webhook)", config.port)
    app.run(host="0.0.0.0", port=config.port)


# ---------------------------------------------------------------------------
# PRIVATE HELPER FUNCTIONS
# ---------------------------------------------------------------------------


def _run_command(agent: CommentAgent, invocation: CommandInvocation) -> None:
    try:
        outcome = handle_command(agent, invocation)
        logger.info(
            "Finished %s command for %s/%s#%s: %s",
            invocation.command,
            invocation.owner,
            invocation.repo,
            invocation.number,
            outcome["action_taken"],
        )
    except Exception:
        logger.exception(
            "Unhandled error in %s command for %s/%s#%s",
            invocation.command,
            invocation.owner,
            invocation.repo,
            invocation.number,
        )
