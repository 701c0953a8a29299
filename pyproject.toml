[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "aquabook"
version = "0.1.0"
description = "Markdown book preprocessor that embeds ownership and permission visualisations of code blocks, with a small analysis server"
requires-python = ">=3.11"
dependencies = [
    "aiohttp",
]
keywords = [
    "markdown",
    "mdbook",
    "preprocessor",
    "ownership",
    "borrow-checker",
    "visualization",
    "education",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Text Processing :: Markup :: Markdown",
    "Topic :: Education",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
aquabook = "aquabook.cli:main"
aquabook-serve = "aquabook.server:main"

[tool.hatch.build.targets.wheel]
packages = ["aquabook"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
