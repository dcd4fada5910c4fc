"""
Persona Store — Gemini Comment Agent

PURPOSE:
    Load the named prompt fragments ("personas") that set Gemini's tone and
    role for a review or plan. Every .txt / .md file directly inside the
    personas directory becomes one persona, keyed by its lowercase filename
    without the extension:

        personas/thorough.md  ->  "thorough"
        personas/Friendly.txt ->  "friendly"

CALLED BY:
    webhook_server.main() — calls load() once before the server accepts
    traffic. The pipelines then call get() from any number of threads.

DESIGN DECISIONS:
    - The loaded personas are an immutable snapshot. load() builds a fresh
      dict and swaps it in with a single assignment, so readers on other
      threads see either the old snapshot or the new one, never a half-built
      mapping. Reloading personas from disk requires calling load() again
      (in practice, a restart).
    - get() never fails. An unknown persona falls back to the fallback key,
      and a missing fallback falls back to a built-in sentence.
    - load() never fails either. A missing or unreadable directory means zero
      personas (every lookup then returns the built-in sentence). A file that
      cannot be read or decoded as UTF-8, or is blank, is skipped with a
      warning and the rest still load.
"""

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Union

logger = logging.getLogger(__name__)

PERSONA_EXTENSIONS = (".txt", ".md")

# Files that may live in the personas directory without being personas
RESERVED_NAMES = frozenset({"index", "readme"})

BUILTIN_FALLBACK_PROMPT = (
    "You are a helpful code reviewer. Please review the following changes."
)


class PersonaStore:

    def __init__(self, personas_dir: Union[str, Path]):
        self.personas_dir = Path(personas_dir)
        self._personas: Mapping[str, str] = MappingProxyType({})

    @property
    def names(self) -> list:
        return sorted(self._personas)

    def load(self) -> None:
        """Scan the personas directory (non-recursively) and swap in a new snapshot."""
        logger.info("Loading personas from %s", self.personas_dir)
        loaded = {}

        for path in self._candidate_files():
            name = path.stem.lower()
            if name in RESERVED_NAMES:
                continue
            try:
                content = path.read_text(encoding="utf-8").strip()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Skipping unreadable persona file %s: %s", path.name, e)
                continue
            if not content:
                logger.warning("Skipping empty persona file %s", path.name)
                continue
            loaded[name] = content
            logger.info("Loaded persona %r from %s", name, path.name)

        if not loaded:
            logger.warning("No personas were loaded; the built-in fallback prompt will be used")

        self._personas = MappingProxyType(loaded)

    def get(self, name: str, fallback_name: str = "default") -> str:
        """
        Return the prompt fragment for a persona (case-insensitive).

        Resolution order: name -> fallback_name -> BUILTIN_FALLBACK_PROMPT.
        """
        personas = self._personas
        prompt = personas.get((name or "").lower())
        if prompt:
            return prompt

        fallback_prompt = personas.get((fallback_name or "").lower())
        if fallback_prompt:
            logger.warning(
                "Persona %r not found, using fallback persona %r", name, fallback_name
            )
            return fallback_prompt

        logger.warning(
            "Neither persona %r nor fallback persona %r exists, using the built-in prompt",
            name,
            fallback_name,
        )
        return BUILTIN_FALLBACK_PROMPT

    def _candidate_files(self) -> list:
        """Persona-looking files directly inside the directory; [] if it cannot be listed."""
        try:
            entries = sorted(self.personas_dir.iterdir())
        except OSError as e:
            logger.warning("Persona directory not found or unreadable: %s (%s)", self.personas_dir, e)
            return []
        # Extension match is case-insensitive, like the persona keys.
        return [
            path for path in entries
            if path.is_file() and path.suffix.lower() in PERSONA_EXTENSIONS
        ]
