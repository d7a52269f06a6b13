[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "garbanzo"
version = "0.1.0"
description = "A small real-time chat server with pods, beans and live websocket messaging"
requires-python = ">=3.10"
keywords = ["chat", "websocket", "starlette", "htmx", "postgresql", "oauth"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "starlette",
    "uvicorn",
    "jinja2",
    "sqlalchemy",
    "httpx",
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "respx",
    "httpx",
]

[project.scripts]
garbanzo = "garbanzo.server:main"

[tool.hatch.build.targets.wheel]
packages = ["garbanzo"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
