"""DevSphere: sandboxed workspace terminal with live file-change streaming."""

__version__ = "0.1.0"
