"""Markdown prompt templates for the analyze, plan and apply phases.

The JSON field names and enum values shown to the agent are the contract that
``taskweave.healing.parsing`` decodes; keep both sides in step.
"""

from __future__ import annotations

from taskweave.healing.models import ErrorAnalysis, FixPlan, TestFailure

STACK_TRACE_LIMIT = 500

_ROOT_CAUSE_LINES = (
    "   - `selector_changed`: Element selector changed",
    "   - `element_not_rendered`: Component not rendering",
    "   - `timing_issue`: Race condition or timing problem",
    "   - `api_error`: Backend API failure",
    "   - `state_mismatch`: Application state mismatch",
    "   - `missing_data`: Required data missing",
    "   - `logic_error`: Code logic bug",
    "   - `ui_layout_change`: UI structure changed",
    "   - `network_error`: Network connectivity issue",
    "   - `dependency_error`: Missing/broken dependency",
    "   - `type_error`: TypeScript type error",
    "   - `build_error`: Build/compilation error",
    "   - `unknown`: Cannot determine",
)

_ANALYSIS_EXAMPLE = (
    "```json",
    "{",
    '  "rootCause": "selector_changed",',
    '  "confidence": 0.85,',
    '  "explanation": "The button ID has changed from submit-btn to submit-button",',
    '  "suggestedFix": "Update the selector in the test file",',
    '  "filesInvolved": ["tests/e2e/login.spec.ts"],',
    '  "canAutoFix": true',
    "}",
    "```",
)

_PLAN_EXAMPLE = (
    "```json",
    "{",
    '  "steps": [',
    "    {",
    '      "order": 1,',
    '      "type": "read",',
    '      "targetFile": "src/components/Login.tsx",',
    '      "description": "Read the login component to understand structure",',
    '      "expectedOutcome": "Component code loaded"',
    "    },",
    "    {",
    '      "order": 2,',
    '      "type": "edit",',
    '      "targetFile": "tests/e2e/login.spec.ts",',
    '      "description": "Update selector from #submit-btn to #submit-button",',
    '      "expectedOutcome": "Test file updated with correct selector"',
    "    }",
    "  ]",
    "}",
    "```",
)


def _fenced(title: str, body: str) -> list[str]:
    return [title, "```", body, "```", ""]


def build_analysis_prompt(failure: TestFailure) -> str:
    """Prompt asking an agent to classify ``failure`` as JSON."""
    sections: list[str] = [
        "# Error Analysis Request",
        "",
        "A test has failed. Analyze the error and determine the root cause.",
        "",
        "## Test Failure Details",
        f"**Test:** {failure.test_name}",
        f"**Suite:** {failure.suite_id}",
        f"**Scenario:** {failure.scenario_id}",
        f"**Timestamp:** {failure.timestamp.isoformat()}",
        "",
    ]
    sections += _fenced("## Error Message", failure.error)
    if failure.expected:
        sections += _fenced("## Expected Value", failure.expected)
    if failure.actual:
        sections += _fenced("## Actual Value", failure.actual)
    if failure.stack:
        sections += _fenced("## Stack Trace", failure.stack[:STACK_TRACE_LIMIT])

    sections += [
        "## Your Task",
        "",
        "Analyze this failure and provide:",
        "",
        "1. **Root Cause** - One of these categories:",
        *_ROOT_CAUSE_LINES,
        "",
        "2. **Confidence** - A number from 0 to 1 indicating your confidence",
        "",
        "3. **Explanation** - Brief explanation of why this error occurred",
        "",
        "4. **Suggested Fix** - High-level approach to fix this issue",
        "",
        "5. **Files Involved** - List of files that likely need to be modified",
        "",
        "6. **Can Auto-Fix** - Whether this can be automatically fixed (true/false)",
        "",
        "## Response Format",
        "",
        "Respond with a JSON object:",
        *_ANALYSIS_EXAMPLE,
        "",
    ]
    return "\n".join(sections)


def build_fix_plan_prompt(analysis: ErrorAnalysis) -> str:
    """Prompt asking an agent to turn ``analysis`` into ordered fix steps."""
    sections: list[str] = [
        "# Fix Plan Generation",
        "",
        "Based on the error analysis, generate a detailed fix plan.",
        "",
        "## Error Analysis",
        f"**Root Cause:** {analysis.root_cause}",
        f"**Confidence:** {analysis.confidence * 100:.0f}%",
        f"**Explanation:** {analysis.explanation}",
        f"**Suggested Fix:** {analysis.suggested_fix}",
        "",
        "## Files to Modify",
        *(f"- {path}" for path in analysis.files_involved),
        "",
        "## Your Task",
        "",
        "Generate a detailed fix plan with the following steps:",
        "",
        "1. **Read** the relevant files to understand current state",
        "2. **Edit** or **Write** the necessary changes",
        "3. **Command** to build/verify the changes if needed",
        "",
        "For each step, provide:",
        "- **order**: Step number (1, 2, 3...)",
        '- **type**: One of "read", "edit", "write", "delete", "command", "analysis"',
        "- **targetFile**: File path (if applicable)",
        "- **description**: What this step does",
        '- **command**: Command to run (if type is "command")',
        "- **expectedOutcome**: What should result from this step",
        "",
        "## Response Format",
        "",
        "Respond with a JSON object:",
        *_PLAN_EXAMPLE,
        "",
    ]
    return "\n".join(sections)


def build_apply_prompt(plan: FixPlan) -> str:
    """Prompt asking an agent to execute ``plan`` with its tools."""
    sections: list[str] = [
        "# Apply Fix",
        "",
        "Execute the following fix plan to resolve the test failure.",
        "",
        "## Fix Steps",
    ]
    for step in plan.steps:
        sections.append(f"### Step {step.order}")
        sections.append(f"**Type:** {step.type}")
        if step.target_file:
            sections.append(f"**File:** {step.target_file}")
        if step.command:
            sections.append(f"**Command:** `{step.command}`")
        sections.append(f"**Description:** {step.description}")
        sections.append(f"**Expected:** {step.expected_outcome}")
        sections.append("")

    sections += [
        "## Instructions",
        "",
        "1. Execute the steps in order",
        "2. Use the appropriate tools (Read, Edit, Write, Bash)",
        "3. If a step fails, analyze why and try an alternative approach",
        "4. After completing all steps, report the result",
        "",
        "**Important:**",
        "- Make minimal changes to fix the specific issue",
        "- Preserve existing code style and patterns",
        "- Do not modify unrelated code",
        "- If you cannot complete the fix, explain why",
        "",
    ]
    return "\n".join(sections)


__all__ = [
    "STACK_TRACE_LIMIT",
    "build_analysis_prompt",
    "build_apply_prompt",
    "build_fix_plan_prompt",
]
