"""
codeweave - assembly and consistency engine for generated code.

Merges independently generated file fragments into one project tree, closes
gaps in the module graph and drives bounded repair loops until the tree is
self-consistent.
"""

__version__ = "0.1.0"
