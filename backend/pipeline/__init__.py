"""
Movie scene pipeline package.

This package contains the core components that drive movie projects:
- Scene state machine and project orchestrator
- Narration muxing, frame extraction and final concatenation
- Error handling for robust pipeline execution
"""

__version__ = "0.1.0"

from .error_handler import PipelineError, ErrorCode, should_retry

__all__ = [
    "PipelineError",
    "ErrorCode",
    "should_retry",
]
