[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gsmdongle"
version = "1.1.0"
description = "Ring and mix buffers, serial port locking, SQLite SMS storage and USB port discovery for GSM dongles"
requires-python = ">=3.10"
dependencies = []
keywords = ["gsm", "sms", "modem", "dongle", "usb", "tty", "at-commands", "telephony"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Telecommunications Industry",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Telephony",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
gsmdongle-discovery = "gsmdongle.usbinfo:main"

[tool.hatch.build.targets.wheel]
packages = ["gsmdongle"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
