"""
Syntax-tree model shared by every pipeline stage, plus parser adapters.
"""

from .tree import LineIndex, Span, SyntaxNode

__all__ = ["LineIndex", "Span", "SyntaxNode"]
