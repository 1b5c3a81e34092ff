"""PromptManager — Jinja2-based prompt renderer for the enrichment client.

Loads templates from the ``template/`` directory and renders enrichment
request contexts into a system prompt plus a user prompt with JSON
response instructions.  One template per enrichment capability.
"""

from __future__ import annotations

import json
from pathlib import Path

import jinja2
from pydantic import BaseModel

# --- Capability-to-template mapping ---
_TASK_TEMPLATES: dict[str, str] = {
    "diagnosis": "diagnosis.jinja2",
    "contraindication": "contraindication.jinja2",
    "treatment": "treatment.jinja2",
    "outcome": "outcome.jinja2",
}

# --- Role line used by the shared system template ---
_TASK_ROLES: dict[str, str] = {
    "diagnosis": (
        "You are a clinical decision support system for chiropractic practices. "
        "Suggest appropriate ICD-10 diagnosis codes for musculoskeletal conditions. "
        "Only suggest codes with clear clinical support."
    ),
    "contraindication": (
        "You are a clinical safety advisor for chiropractic practices. "
        "Analyze patient information for contraindications to the proposed treatment. "
        "Be thorough and conservative."
    ),
    "treatment": (
        "You are a clinical decision support system for chiropractic practices. "
        "Provide evidence-based treatment recommendations and prioritize patient safety."
    ),
    "outcome": (
        "You are a clinical decision support system specializing in outcome prediction "
        "for chiropractic care. Be realistic and balanced."
    ),
}


class PromptManager:
    """Jinja2-based prompt renderer for enrichment requests.

    Args:
        template_dir: optional override for the template directory.
            Defaults to ``template/`` sibling of this module.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        if template_dir is None:
            template_dir = Path(__file__).parent / "template"
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._env.filters["tojson"] = lambda v: json.dumps(v, ensure_ascii=False)

    @property
    def tasks(self) -> list[str]:
        return list(_TASK_TEMPLATES)

    def render_system(self, task: str) -> str:
        """Render the system prompt for an enrichment *task*."""
        if task not in _TASK_ROLES:
            raise KeyError(f"Unknown enrichment task '{task}'")
        return self.render("system.jinja2", role=_TASK_ROLES[task])

    def render_task(self, task: str, context: BaseModel) -> str:
        """Render the user prompt for *task* from a request context model."""
        template_name = _TASK_TEMPLATES.get(task)
        if template_name is None:
            raise KeyError(f"Unknown enrichment task '{task}'")
        return self.render(template_name, ctx=context)

    def render(self, template_name: str, **context) -> str:
        """Render a named template with arbitrary context."""
        template = self._env.get_template(template_name)
        return template.render(**context)
