"""
Local package for the ComfyUI launcher.

This package holds the launcher-side runtime: the merged configuration,
the process supervisor, the operator console and its HTTP API client.
"""
