"""
Reporting module for Guardrail.

Renders evaluation results for humans and machines.

Output formats:
    - Console: Rich table of findings per package plus a summary line
    - JSON: Structured output (also served by POST /evaluate)

Example:
    from guardrail.report import generate_console_report, generate_json_report

    entries = evaluate_all(snapshot, document)
    generate_console_report(entries)
    print(generate_json_report(entries))
"""

from guardrail.report.console import generate_console_report
from guardrail.report.json import build_batch_report, build_result_report, generate_json_report

__all__ = [
    "build_batch_report",
    "build_result_report",
    "generate_console_report",
    "generate_json_report",
]
