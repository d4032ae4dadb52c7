"""Text-generation collaborator: synopsis suggestions for documents."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from manuscript.errors import GenerationError, StructuralError
from manuscript.project.nodes import ProjectNode
from manuscript.project.project import Project

logger = logging.getLogger(__name__)

SYNOPSIS_PROMPT = (
    "Write a one-paragraph synopsis (at most three sentences) of the following "
    "manuscript section. Reply with the synopsis only.\n\n"
    "Title: {title}\n\n{body}"
)
MAX_PROMPT_CHARS = 24_000


@runtime_checkable
class TextGenerator(Protocol):
    """Anything that turns a prompt into text. Failures raise ``GenerationError``."""

    def generate(self, prompt: str) -> str: ...


@dataclass
class AnthropicGenerator:
    """Generator backed by the `anthropic` SDK (install the ``api`` extra)."""

    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 1024
    timeout: int = 120

    def __post_init__(self) -> None:
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic package required. Install with: pip install 'manuscript[api]'"
            ) from None
        self._anthropic = anthropic
        self._client = anthropic.Anthropic(timeout=self.timeout)

    @property
    def name(self) -> str:
        return "anthropic_api"

    def generate(self, prompt: str) -> str:
        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except self._anthropic.APIError as e:
            logger.error("Anthropic API error: %s", e)
            raise GenerationError(f"Anthropic API error: {e}") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if response.usage:
            logger.debug(
                "Generated %d chars (%d in / %d out tokens)",
                len(text), response.usage.input_tokens, response.usage.output_tokens,
            )
        return text


def synopsis_prompt(node: ProjectNode) -> str:
    body = node.body
    if len(body) > MAX_PROMPT_CHARS:
        body = body[:MAX_PROMPT_CHARS]
    return SYNOPSIS_PROMPT.format(title=node.title, body=body)


def _document(project: Project, node_id: str) -> ProjectNode:
    node = project.tree.get(node_id)
    if not node.is_document:
        raise StructuralError(f"Node {node_id} is a folder; synopses are generated for documents")
    return node


def _store_synopsis(project: Project, node: ProjectNode, generated: str) -> str:
    synopsis = generated.strip()
    if not synopsis:
        raise GenerationError(f"Empty synopsis returned for '{node.title}'")
    project.tree.update_metadata(node.id, synopsis=synopsis)
    logger.info("Generated synopsis for '%s' (%d chars)", node.title, len(synopsis))
    return synopsis


def generate_synopsis(project: Project, node_id: str, generator: TextGenerator) -> str:
    """Ask ``generator`` for a synopsis and store it on the document.

    On ``GenerationError`` the tree is left untouched.
    """
    node = _document(project, node_id)
    return _store_synopsis(project, node, generator.generate(synopsis_prompt(node)))


async def generate_synopsis_async(
    project: Project, node_id: str, generator: TextGenerator
) -> str:
    """Same as ``generate_synopsis``; only the service call runs on a worker thread."""
    node = _document(project, node_id)
    generated = await asyncio.to_thread(generator.generate, synopsis_prompt(node))
    return _store_synopsis(project, node, generated)
