"""SSH connection helpers for repo-snapshot."""
