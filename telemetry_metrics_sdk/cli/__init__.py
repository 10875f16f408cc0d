"""
Command line interface for Telemetry Metrics SDK.
"""

from .main import app, main, run_sample

__all__ = ['app', 'main', 'run_sample']
