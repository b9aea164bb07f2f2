"""
Scriptwriter - Interactive Story Generation Engine
Expands a story constitution into a branching tree of scenelets.
"""

__version__ = "0.1.0"
