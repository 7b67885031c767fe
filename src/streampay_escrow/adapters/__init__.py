"""Platform adapters — normalize tracker webhooks into canonical events."""

from streampay_escrow.adapters.github import GitHubPayloadError, normalize_github_event

__all__ = ["GitHubPayloadError", "normalize_github_event"]
