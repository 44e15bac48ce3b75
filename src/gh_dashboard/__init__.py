"""gh-dashboard: repository status dashboard for a GitHub organization."""

__version__ = "0.1.0"
