"""Report aggregation and printable HTML rendering."""

from .print_template import PrintFields, render_print_report
from .summary import ReportSummary, summarize

__all__ = ["PrintFields", "ReportSummary", "render_print_report", "summarize"]
