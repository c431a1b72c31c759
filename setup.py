"""
Setup script for logos-scheduler.

logos-scheduler is the per-learner decision core of a language-learning
system. For every learner and language object it tracks:

1. Mastery - five-stage state machine driven by cue-free accuracy
2. Memory decay - stability/difficulty scheduler for the next review
3. Bottlenecks - root-cause component across the linguistic cascade
4. Priority - effective priority ordering of the review queue

The 'logos' command is the CLI entry point.
"""

from setuptools import find_namespace_packages, setup

setup(
    name="logos-scheduler",
    version="1.0.0",
    description="Mastery, decay, bottleneck and priority scheduling for language learning",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_namespace_packages(include=["src", "src.*"]),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # Response matching
        "rapidfuzz>=3.0.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "logos=src.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning spaced-repetition mastery scheduling language",
)
