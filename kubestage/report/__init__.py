"""Deployment report construction and rendering."""

from kubestage.report.reporter import plan_report, render_json, render_text, summarize, verdict_for

__all__ = ["plan_report", "render_json", "render_text", "summarize", "verdict_for"]
