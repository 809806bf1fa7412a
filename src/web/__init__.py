"""
Web application package for the ComfyUI launcher.

This package contains the Starlette application exposing the supervisor's
start, stop, reset, status and log operations over HTTP.
"""
