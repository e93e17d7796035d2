[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "devicewatch"
version = "0.1.0"
description = "Device monitoring service: registers devices, matches incoming messages against tag rules and serves reports over HTTP"
requires-python = ">=3.10"
keywords = ["monitoring", "devices", "alerts", "reports", "flask", "sqlite"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "flask>=2.2",
    "werkzeug>=2.2",
    "pyjwt>=2.6",
    "python-dotenv>=1.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "flask>=2.2",
    "pyjwt>=2.6",
]

[project.scripts]
devicewatch = "devicewatch.app:main"

[tool.hatch.build.targets.wheel]
packages = ["devicewatch"]

[tool.hatch.build.targets.sdist]
include = ["devicewatch", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
