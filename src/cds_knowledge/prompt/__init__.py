"""Prompt rendering for the enrichment client.

Provides ``PromptManager``, a Jinja2-based template engine that renders
enrichment request contexts into prompt strings with JSON response
format instructions.
"""

from cds_knowledge.prompt.manager import PromptManager

__all__ = ["PromptManager"]
