"""Content approval workflow: moderation queue for machine-generated content."""

__version__ = "1.0.0"
