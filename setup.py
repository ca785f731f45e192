#!/usr/bin/env python3
"""
Setup script for ClaimDesk.

This script enables packaging the service for distribution and installation
via pip or other Python package managers.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the project directory
here = Path(__file__).parent.resolve()

# Read the README file
long_description = (here / "README.md").read_text(encoding="utf-8") if (here / "README.md").exists() else ""


# Read version from the package
def get_version():
    """Get version from claimdesk/__init__.py."""
    for line in (here / "claimdesk" / "__init__.py").read_text(encoding="utf-8").splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip('"\'')
    return "0.0.0"


# Read requirements
def get_requirements():
    """Read requirements from requirements.txt."""
    requirements_file = here / "requirements.txt"
    if requirements_file.exists():
        with open(requirements_file, "r", encoding="utf-8") as f:
            return [
                line.strip()
                for line in f
                if line.strip() and not line.startswith("#")
            ]
    return []


# Package configuration
setup(
    # Basic package information
    name="claimdesk",
    version=get_version(),
    description="Insurance claims automation backend with a rule engine and strategic LLM context pipeline",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Package discovery
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],

    # Dependencies
    python_requires=">=3.11",
    install_requires=get_requirements(),

    # Optional dependencies
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "httpx>=0.25.0",
        ],
    },

    # Entry points
    entry_points={
        "console_scripts": [
            "claimdesk=main:main",
        ],
    },

    # Classification
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Financial and Insurance Industry",
        "Framework :: FastAPI",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Environment :: Web Environment",
    ],

    # Keywords
    keywords="insurance claims automation crm public adjuster",

    # Additional metadata
    license="MIT",
    include_package_data=True,
    zip_safe=False,
)
