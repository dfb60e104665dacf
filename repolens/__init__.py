"""RepoLens: AI-assisted assessment of public source repositories."""

__version__ = "1.0.0"
