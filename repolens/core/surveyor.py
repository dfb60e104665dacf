"""Content survey of a checked-out repository.

:func:`survey` walks the working tree once for language statistics, line
counts and a bounded file listing, then a second, shallower pass collects
configuration files by category. The result is a transient
:class:`RepositoryContext` that feeds prompt construction and the injection
guard; it is never persisted.

The walk is synchronous and disk-bound; async callers should run it with
``asyncio.to_thread``.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MAX_WALK_DEPTH = 10
MAX_CONFIG_DEPTH = 3
MAX_FILE_LIST = 1000
MAX_CONFIG_FILE_BYTES = 50 * 1024
MAX_README_CHARS = 10_000

README_VARIANTS: tuple[str, ...] = ("README.md", "README.MD", "readme.md", "README", "README.txt")

IGNORE_DIRS: frozenset[str] = frozenset({
    "node_modules", ".git", ".next", "dist", "build", "out", "coverage", ".cache",
    "vendor", "target", "__pycache__", ".venv", "venv", ".idea", ".vscode",
})

LANGUAGE_MAP: dict[str, str] = {
    ".js": "JavaScript", ".jsx": "JavaScript",
    ".ts": "TypeScript", ".tsx": "TypeScript",
    ".py": "Python", ".java": "Java", ".cpp": "C++", ".c": "C", ".cs": "C#",
    ".go": "Go", ".rs": "Rust", ".rb": "Ruby", ".php": "PHP", ".swift": "Swift",
    ".kt": "Kotlin", ".scala": "Scala", ".r": "R", ".m": "Objective-C",
    ".h": "C/C++ Header", ".vue": "Vue", ".dart": "Dart", ".ex": "Elixir",
    ".clj": "Clojure", ".hs": "Haskell", ".lua": "Lua", ".pl": "Perl",
    ".sh": "Shell", ".html": "HTML", ".css": "CSS", ".scss": "SCSS",
    ".sass": "Sass", ".less": "Less", ".json": "JSON", ".xml": "XML",
    ".yaml": "YAML", ".yml": "YAML", ".sql": "SQL", ".md": "Markdown",
}

TEXT_EXTENSIONS: frozenset[str] = frozenset(LANGUAGE_MAP) | {".txt", ".env", ".gitignore", ".config"}

# Category -> filename or relative-path glob patterns. A pattern containing
# "/" is matched against the path relative to the repository root.
CONFIG_FILE_PATTERNS: dict[str, tuple[str, ...]] = {
    "package_managers": (
        "package.json", ".npmrc", ".yarnrc", "requirements.txt", "Pipfile",
        "pyproject.toml", "setup.py", "setup.cfg", "environment.yml",
        "environment.yaml", "conda.yml", "conda.yaml", "Gemfile", ".ruby-version",
        "go.mod", "go.sum", "Cargo.toml", "pom.xml", "build.gradle",
        "build.gradle.kts", "settings.gradle", "gradle.properties",
        "composer.json", "Package.swift", "Package.resolved", "pubspec.yaml",
        "mix.exs", "build.sbt", "project.clj", "DESCRIPTION", "NAMESPACE",
        "Podfile", "Cartfile", "Cartfile.resolved",
    ),
    "build_tools": (
        "tsconfig.json", "jsconfig.json", "webpack.config.js", "webpack.config.ts",
        "vite.config.js", "vite.config.ts", "rollup.config.js", "rollup.config.ts",
        "next.config.js", "next.config.ts", "next.config.mjs", "nuxt.config.js",
        "nuxt.config.ts", "vue.config.js", "svelte.config.js", "astro.config.mjs",
        "esbuild.config.js", "babel.config.js", "babel.config.json", ".babelrc",
        ".babelrc.json", "Makefile", "CMakeLists.txt", "Rakefile",
    ),
    "code_quality": (
        ".eslintrc", ".eslintrc.js", ".eslintrc.json", ".eslintrc.yaml",
        "eslint.config.js", "eslint.config.mjs", ".prettierrc", ".prettierrc.js",
        ".prettierrc.json", ".prettierrc.yaml", "prettier.config.js",
        ".stylelintrc", ".stylelintrc.js", ".stylelintrc.json", "tslint.json",
        ".pylintrc", "pylint.rc", ".flake8", "mypy.ini", ".mypy.ini",
        "rubocop.yml", ".rubocop.yml", ".editorconfig",
    ),
    "testing": (
        "jest.config.js", "jest.config.ts", "jest.config.json", "vitest.config.js",
        "vitest.config.ts", "karma.conf.js", "playwright.config.js",
        "playwright.config.ts", "cypress.json", "cypress.config.js",
        "cypress.config.ts", "pytest.ini", "tox.ini", ".rspec",
    ),
    "deployment": (
        "Dockerfile", "docker-compose.yml", "docker-compose.yaml", ".dockerignore",
        "Procfile", "app.yaml", "app.yml", "serverless.yml", "serverless.yaml",
        "vercel.json", "netlify.toml", ".github/workflows/*.yml",
        ".github/workflows/*.yaml", ".gitlab-ci.yml", ".travis.yml",
        "azure-pipelines.yml", "Jenkinsfile",
    ),
    "environment": (
        ".env.example", ".env.local", ".env.development", ".env.production",
        ".nvmrc", ".node-version", ".python-version", "runtime.txt", ".tool-versions",
    ),
    "other": (
        "*.csproj", "*.fsproj", "*.vbproj", "packages.config",
    ),
}

CONFIG_CATEGORY_LABELS: dict[str, str] = {
    "package_managers": "Package Management & Dependencies",
    "build_tools": "Build & Compilation Configuration",
    "code_quality": "Code Quality & Linting",
    "testing": "Testing Configuration",
    "deployment": "Deployment & CI/CD",
    "environment": "Environment & Runtime",
    "other": "Other Configuration Files",
}


@dataclass
class RepositoryContext:
    """Survey output for one checkout.

    Attributes:
        repo_url: Repository URL the checkout came from.
        languages: Language name -> number of files.
        file_structure: Relative paths in walk order, capped at 1000 entries.
        config_files: Category -> {relative path: content}; empty categories omitted.
        readme_content: Truncated README text, ``None`` when no variant exists.
        total_files: Files seen by the walk.
        total_lines: Newline-delimited lines across recognised text files.
    """

    repo_url: str
    languages: dict[str, int] = field(default_factory=dict)
    file_structure: list[str] = field(default_factory=list)
    config_files: dict[str, dict[str, str]] = field(default_factory=dict)
    readme_content: str | None = None
    total_files: int = 0
    total_lines: int = 0


def survey(local_path: str, repo_url: str) -> RepositoryContext:
    """Survey the checkout at *local_path*.

    Per-file and per-directory read errors are logged and skipped; only a
    failure to list *local_path* itself propagates.
    """
    logger.info("Surveying repository at %s", local_path)
    context = RepositoryContext(repo_url=repo_url)

    # Fails loudly when the checkout root is unreadable
    top_level = list(os.scandir(local_path))

    context.readme_content = _read_readme(local_path)
    _walk(local_path, local_path, context, 0, top_level)
    context.config_files = _categorize(_collect_config_files(local_path, local_path, 0))

    logger.info(
        "Survey complete: %d files, %d lines, %d config files",
        context.total_files,
        context.total_lines,
        sum(len(files) for files in context.config_files.values()),
    )
    return context


def summarize_context(context: RepositoryContext) -> str:
    """One-paragraph, human-readable digest of a survey."""
    top_languages = sorted(context.languages.items(), key=lambda kv: kv[1], reverse=True)[:5]
    language_text = ", ".join(f"{name} ({count})" for name, count in top_languages) or "none"
    categories = ", ".join(
        CONFIG_CATEGORY_LABELS.get(category, category) for category in context.config_files
    ) or "none"
    readme = "README present" if context.readme_content else "no README"
    return (
        f"{context.total_files} files, {context.total_lines} lines. "
        f"Top languages: {language_text}. Configuration: {categories}. {readme}."
    )


# ---------------------------------------------------------------------------
# Tree walk
# ---------------------------------------------------------------------------


def _walk(
    current: str,
    base: str,
    context: RepositoryContext,
    depth: int,
    entries: list[os.DirEntry] | None = None,
) -> None:
    if depth > MAX_WALK_DEPTH:
        return
    if entries is None:
        try:
            entries = list(os.scandir(current))
        except OSError as exc:
            logger.warning("Failed to scan directory %s: %s", current, exc)
            return

    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                if entry.name in IGNORE_DIRS:
                    continue
                _walk(entry.path, base, context, depth + 1)
            elif entry.is_file(follow_symlinks=False):
                _process_file(entry.path, os.path.relpath(entry.path, base), context)
        except OSError as exc:
            logger.warning("Failed to process %s: %s", entry.path, exc)


def _process_file(path: str, relative_path: str, context: RepositoryContext) -> None:
    ext = os.path.splitext(relative_path)[1].lower()
    language = LANGUAGE_MAP.get(ext, "Other")
    context.languages[language] = context.languages.get(language, 0) + 1

    if len(context.file_structure) < MAX_FILE_LIST:
        context.file_structure.append(relative_path)
    context.total_files += 1

    if ext in TEXT_EXTENSIONS:
        context.total_lines += _count_lines(path)


def _count_lines(path: str) -> int:
    try:
        with open(path, encoding="utf-8") as fh:
            return len(fh.read().split("\n"))
    except (OSError, UnicodeDecodeError):
        return 0


def _read_readme(root: str) -> str | None:
    for name in README_VARIANTS:
        path = os.path.join(root, name)
        try:
            with open(path, encoding="utf-8", errors="replace") as fh:
                content = fh.read()
        except OSError:
            continue
        if len(content) > MAX_README_CHARS:
            return content[:MAX_README_CHARS] + "..."
        return content
    return None


# ---------------------------------------------------------------------------
# Configuration files
# ---------------------------------------------------------------------------


def _matches(pattern: str, file_name: str, relative_path: str) -> bool:
    if "/" in pattern:
        return fnmatch.fnmatchcase(relative_path.replace(os.sep, "/"), pattern)
    if "*" in pattern:
        return fnmatch.fnmatchcase(file_name, pattern)
    return file_name == pattern


def _config_category(file_name: str, relative_path: str) -> str | None:
    for category, patterns in CONFIG_FILE_PATTERNS.items():
        if any(_matches(p, file_name, relative_path) for p in patterns):
            return category
    return None


def _collect_config_files(root: str, current: str, depth: int) -> dict[str, str]:
    found: dict[str, str] = {}
    if depth > MAX_CONFIG_DEPTH:
        return found

    try:
        entries = list(os.scandir(current))
    except OSError as exc:
        logger.warning("Failed to scan directory %s: %s", current, exc)
        return found

    for entry in entries:
        relative_path = os.path.relpath(entry.path, root)
        try:
            if entry.is_dir(follow_symlinks=False):
                if entry.name not in IGNORE_DIRS:
                    found.update(_collect_config_files(root, entry.path, depth + 1))
                continue
            if not entry.is_file(follow_symlinks=False):
                continue
            if _config_category(entry.name, relative_path) is None:
                continue
            size = entry.stat(follow_symlinks=False).st_size
            if size > MAX_CONFIG_FILE_BYTES:
                logger.info("Skipping large config file: %s (%d bytes)", relative_path, size)
                continue
            with open(entry.path, encoding="utf-8", errors="replace") as fh:
                found[relative_path] = fh.read()
        except OSError as exc:
            logger.warning("Failed to read config file %s: %s", relative_path, exc)
    return found


def _categorize(config_files: dict[str, str]) -> dict[str, dict[str, str]]:
    categorized: dict[str, dict[str, str]] = {}
    for relative_path, content in config_files.items():
        category = _config_category(os.path.basename(relative_path), relative_path) or "other"
        categorized.setdefault(category, {})[relative_path] = content
    # Keep the catalogue's category order
    return {
        category: categorized[category]
        for category in CONFIG_FILE_PATTERNS
        if category in categorized
    }
