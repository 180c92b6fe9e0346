"""Primary source package for the novel analyzer.

This makes the 'src' directory a proper Python package so that test imports
like 'novel_analyzer.src.processing.orchestrator' succeed. All intra-package
imports should use relative form (e.g. 'from ..config import Config').
"""

__all__ = []
