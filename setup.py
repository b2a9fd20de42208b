#!/usr/bin/env python3
"""
Panekeeper - worker pane lifecycle supervision
Setup and installation configuration
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_path = Path(__file__).parent / "README.md"
if readme_path.exists():
    long_description = readme_path.read_text()
else:
    long_description = "Panekeeper - spawn, track and stop worker processes in terminal multiplexer panes"

setup(
    name="panekeeper",
    version="1.0.0",
    author="Panekeeper Developers",
    description="Lifecycle supervision for worker processes running in terminal multiplexer panes",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Build Tools",
        "Topic :: Terminals :: Terminal Emulators/X Terminals",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.8",
    install_requires=[
        "click>=8.0",
        "pyyaml>=6.0",
        "psutil>=5.9",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "mypy>=1.0",
            "flake8>=5.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "panekeeper=panekeeper.cli:cli",
            "pkeep=panekeeper.cli:cli",  # Short alias
        ],
    },
)
