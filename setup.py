"""Setup script for kgpack.

This script installs the kgpack plugin packager and its dependencies.
"""

from __future__ import annotations

import setuptools

# Read the long description from README.md
with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

# Read version from __version__.py
version = {}
with open("kgpack/__version__.py", "r", encoding="utf-8") as f:
    exec(f.read(), version)

# Dependencies
install_requires = [
    "pydantic>=2.0.0",
    "pyyaml>=6.0",
    "structlog>=22.1.0",
    "python-json-logger>=2.0.4",
    "aiofiles>=23.1.0",
]

# Development dependencies
dev_requires = [
    "pytest>=7.0.0",
    "pytest-asyncio>=0.21.0",
    "pytest-cov>=4.0.0",
    "black>=23.1.0",
    "isort>=5.12.0",
    "mypy>=1.0.0",
    "types-pyyaml",
    "types-aiofiles",
]

setuptools.setup(
    name="kgpack",
    version=version.get("__version__", "0.1.0"),
    author="Kabegame Team",
    description="Packages crawler plugins into .kgpg archives and generates their release index",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/kabegame/crawler-plugins",
    packages=setuptools.find_packages(exclude=("tests", "tests.*")),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.11",
    install_requires=install_requires,
    extras_require={
        "dev": dev_requires,
    },
    entry_points={
        "console_scripts": [
            "kgpack=kgpack.cli:main",
        ],
    },
)
