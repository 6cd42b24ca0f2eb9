"""Tests for Jinja2 prompt rendering."""

import pytest

from chakravarti.errors import PromptRenderError
from chakravarti.prompts import SYSTEM_PROMPT, build_messages, render_prompt
from chakravarti.schemas import FailedStepFeedback, Feedback, Step, StepKind


class TestRenderPrompt:
    def test_renders_variables(self):
        assert render_prompt("Hello {{ name }}", {"name": "world"}) == "Hello world"

    def test_undefined_variable_raises(self):
        with pytest.raises(PromptRenderError, match="failed to render"):
            render_prompt("{{ missing }}", {})

    def test_syntax_error_raises(self):
        with pytest.raises(PromptRenderError):
            render_prompt("{% if %}", {})

    def test_no_html_escaping(self):
        assert render_prompt("{{ code }}", {"code": "a < b && c"}) == "a < b && c"


class TestBuildMessages:
    def test_analyze_default_template(self, spec):
        messages = build_messages(Step("analyze", "Analyze", StepKind.ANALYZE), spec, {})
        assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
        user = messages[1]["content"]
        assert "Add a login page" in user
        assert "- Do not touch the public API" in user
        assert "- Invalid credentials show an error" in user
        assert "Previous attempt" not in user

    def test_generate_includes_prior_outputs(self, spec):
        outputs = {"analyze": {"content": "Touch app/login.py"}, "lint": {"exit_code": "0"}}
        user = build_messages(Step("generate", "Generate", StepKind.GENERATE), spec, outputs)[1]["content"]
        assert "## Output of analyze" in user
        assert "Touch app/login.py" in user
        assert "lint" not in user

    def test_feedback_rendered_on_replan(self, spec):
        feedback = Feedback(
            attempt_number=1,
            reason="step `test` failed: exit code 1",
            failed_steps=(FailedStepFeedback("test", "exit code 1", "AssertionError"),),
            unmet_criteria=("Login form renders",),
        )
        user = build_messages(Step("analyze", "Analyze", StepKind.ANALYZE), spec, {}, feedback)[1]["content"]
        assert "Attempt 1 failed" in user
        assert "stderr: AssertionError" in user

    def test_custom_step_prompt(self, spec):
        step = Step(
            "docs", "Docs", StepKind.GENERATE, depends_on=("analyze",),
            prompt="Document {{ spec.id }} using: {{ steps.analyze.outputs.content }}",
        )
        user = build_messages(step, spec, {"analyze": {"content": "notes"}})[1]["content"]
        assert user == "Document add_login using: notes"

    def test_custom_prompt_missing_output_raises(self, spec):
        step = Step("docs", "Docs", StepKind.GENERATE, prompt="{{ steps.analyze.outputs.content }}")
        with pytest.raises(PromptRenderError):
            build_messages(step, spec, {})

    def test_kind_without_template_raises(self, spec):
        with pytest.raises(PromptRenderError, match="No prompt template"):
            build_messages(Step("t", "T", StepKind.TEST), spec, {})
