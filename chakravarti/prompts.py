"""
Prompt rendering for model-backed steps via Jinja2.

Analyze and Generate steps send a chat prompt to the model collaborator. The
prompt comes from the step's own `prompt` template when it has one, otherwise
from the default template for its kind. Templates see:

    spec       - the Spec (goal, constraints, acceptance)
    step       - the Step being executed
    steps      - {step_id: {"outputs": {...}}} for steps completed so far
    feedback   - Feedback from the previous attempt, or None

Example step template:
    Implement the change described in:
    {{ steps.analyze.outputs.content }}

Rendering is strict: referencing an undefined variable raises
PromptRenderError instead of silently producing an empty string.
"""

from typing import Any, Optional

from jinja2 import Environment, StrictUndefined, TemplateError

from chakravarti.errors import PromptRenderError
from chakravarti.schemas import Feedback, Spec, Step, StepKind

SYSTEM_PROMPT = (
    "You are an autonomous software engineer working inside an isolated "
    "checkout of a code repository. Follow the constraints exactly."
)

ANALYZE_TEMPLATE = """\
# Goal
{{ spec.goal }}

{% if spec.constraints -%}
# Constraints
{% for c in spec.constraints -%}
- {{ c }}
{% endfor %}
{% endif -%}
# Acceptance criteria
{% for a in spec.acceptance -%}
- {{ a }}
{% endfor %}
{% if feedback -%}
# Previous attempt
{{ feedback.summary() }}

{% endif -%}
Analyze the repository and describe the changes required to meet the goal.
"""

GENERATE_TEMPLATE = """\
# Goal
{{ spec.goal }}

{% for step_id, result in steps.items() if result.outputs.get("content") -%}
## Output of {{ step_id }}
{{ result.outputs.content }}

{% endfor -%}
{% if feedback -%}
# Previous attempt
{{ feedback.summary() }}

{% endif -%}
Apply the changes to the working tree so that every acceptance criterion holds.
"""

DEFAULT_TEMPLATES: dict[StepKind, str] = {
    StepKind.ANALYZE: ANALYZE_TEMPLATE,
    StepKind.GENERATE: GENERATE_TEMPLATE,
}

_env = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=True)


def render_prompt(template: str, variables: dict[str, Any]) -> str:
    """
    Render a prompt template.

    Raises:
        PromptRenderError: Syntax error or undefined variable in the template
    """
    try:
        return _env.from_string(template).render(**variables)
    except TemplateError as e:
        raise PromptRenderError(f"Prompt template failed to render: {e}") from e


def build_messages(
    step: Step,
    spec: Spec,
    step_outputs: dict[str, dict[str, str]],
    feedback: Optional[Feedback] = None,
) -> list[dict[str, str]]:
    """Build the chat messages for a model-backed step."""
    template = step.prompt or DEFAULT_TEMPLATES.get(step.kind)
    if template is None:
        raise PromptRenderError(f"No prompt template for step kind: {step.kind.value}")

    content = render_prompt(template, {
        "spec": spec,
        "step": step,
        "steps": {sid: {"outputs": outs} for sid, outs in step_outputs.items()},
        "feedback": feedback,
    })
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]
