"""RepoLens core scan components.

This package contains the repository locator and fetcher, the content
surveyor, prompt construction and injection screening, and the error taxonomy
shared by the scan orchestrator and the HTTP layer.
"""
