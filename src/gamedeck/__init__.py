"""gamedeck - Automated gaming session orchestration.

This package prepares the environment around a game session by toggling
auxiliary applications, launches the game through its store platform or
directly, monitors it until exit, and restores the environment afterwards.
"""

__version__ = "0.1.0"
