# Gemini Comment Agent - Package
#
# This package contains the GitHub App that answers two comment commands:
#   !review  (on pull request comments) -> posts an AI code review
#   !plan    (on issue comments)        -> posts an AI task breakdown
#
# A Flask webhook endpoint receives issue_comment events, the dispatcher
# decides whether a comment is a command, and a background thread runs the
# matching pipeline. Each stage is in its own file; the pipelines that wire
# them together live in comment_pipeline_main.py.
#
# Stage flow (per command):
#   1. Parse & Filter -> 2. Fetch GitHub Context -> 3. Build Prompt
#   -> 4. Gemini Generation -> 5. Post Reply
