[build-system]
requires = ["setuptools>=61.0"]
build-backend = "setuptools.build_meta"

[project]
name = "roomchat"
version = "0.1.0"
description = "A small TCP chat server and terminal client with user accounts and chat rooms stored in SQLite"
requires-python = ">=3.10"
dependencies = []
keywords = ["chat", "chat-server", "chat-client", "rooms", "tcp", "sqlite"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
roomchat-server = "roomchat.server:main"
roomchat-client = "roomchat.ui:main"

[tool.setuptools.packages.find]
include = ["roomchat*"]

[tool.pytest.ini_options]
addopts = "-ra"
