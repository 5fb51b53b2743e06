from .client import GitHubClient, PostedComment, PullRequest, SimulatedGitHubClient

__all__ = ["GitHubClient", "PostedComment", "PullRequest", "SimulatedGitHubClient"]
