"""Textual front end for diskscope."""

from diskscope.tui.app import DiskscopeApp, run_dashboard

__all__ = ["DiskscopeApp", "run_dashboard"]
