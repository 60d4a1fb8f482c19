"""
Resource Loading Handler

Builds the system prompt from the persona prompt and the product knowledge
base. Both are read once; the resulting text is shared read-only by every
invocation.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rustun_agent.config import Configuration

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_PROMPT_FILE = PACKAGE_DIR / "system_prompt.md"
DEFAULT_KNOWLEDGE_FILE = PACKAGE_DIR / "knowledge.md"

KNOWLEDGE_HEADER = "## Product Knowledge Base"


class ResourceLoader:
    """Loads the system prompt and knowledge base once."""

    def __init__(self, configuration: Configuration) -> None:
        self.configuration = configuration
        self._system_prompt: str | None = None

    def _resolve(self, key: str, default: Path) -> Path:
        configured = self.configuration.get_chat_service_config().get(key)
        return Path(configured) if configured else default

    def load(self) -> str:
        """Read the prompt files and build the system prompt (first call only)."""
        if self._system_prompt is not None:
            return self._system_prompt

        prompt_path = self._resolve("system_prompt_file", DEFAULT_PROMPT_FILE)
        knowledge_path = self._resolve("knowledge_file", DEFAULT_KNOWLEDGE_FILE)

        logger.info("→ Resources: loading system prompt from %s", prompt_path)
        base = prompt_path.read_text(encoding="utf-8").strip()

        if knowledge_path.exists():
            knowledge = knowledge_path.read_text(encoding="utf-8").strip()
            base += f"\n\n---\n\n{KNOWLEDGE_HEADER}\n\n{knowledge}"
            logger.info("→ Resources: knowledge base loaded, %d chars", len(knowledge))
        else:
            logger.warning("Knowledge base %s not found, system prompt will not include it", knowledge_path)

        self._system_prompt = base
        logger.info("← Resources: system prompt built, length=%d chars", len(base))
        return base

    @property
    def system_prompt(self) -> str:
        return self.load()
