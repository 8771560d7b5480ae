"""Worker pool and publishers that send web archiving results to other services."""

__version__ = "0.1.0"

__all__ = ["pooling", "publish", "meili", "omnivore", "github", "mastodon", "notion"]