[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wayback-publish"
version = "0.1.0"
description = "Worker pool and publishers that send web archiving results to Meilisearch, Omnivore, GitHub issues, Mastodon and Notion"
requires-python = ">=3.10"
keywords = ["wayback", "archive", "publish", "meilisearch", "omnivore", "github", "mastodon", "notion", "worker-pool"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
    "Typing :: Typed",
]
dependencies = [
    "requests>=2.28",
    "packaging>=21.0",
    "beautifulsoup4>=4.11",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
]

[tool.hatch.build.targets.wheel]
packages = ["wayback_publish"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
