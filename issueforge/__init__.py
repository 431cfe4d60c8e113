"""Issue Forge: automated GitHub issue resolution with a multi-agent pipeline."""

__version__ = "1.0.0"
