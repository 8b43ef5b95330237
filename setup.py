"""
Setup script for lingo-pedagogy.

Lingo is the adaptive control loop behind a language-learning app. It
decides what a learner practises next:

1. Scheduler - SM-2 spaced repetition over lexical chunks
2. Calibrator - i+1 difficulty targeting
3. Affective filter monitor - frustration detection and adaptation

The 'lingo' command runs scheduler, calibration and session simulations
from the terminal.
"""

from setuptools import find_namespace_packages, setup

setup(
    name="lingo-pedagogy",
    version="1.0.0",
    description="Adaptive pedagogy control loop for lexical chunk learning",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="Lingo",
    packages=find_namespace_packages(include=["src", "src.*"]),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "lingo=src.cli.lingo_cli:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning spaced-repetition language-learning education i+1",
)
