"""
The Supervisor package.
Manages the lifecycle of the ComfyUI process.

This package contains the central Supervisor class and its helper modules,
which together handle starting, stopping, resetting and inspecting the
managed ComfyUI installation.
"""
from .supervisor import Supervisor

__all__ = ['Supervisor']
