"""Package metadata for rigstore (the `rigs` CLI)."""

from setuptools import find_packages, setup

setup(
    name="rigstore",
    version="0.1.0",
    description="File-backed issue tracker with prefix routing across rigs and a dependency-graph engine",
    python_requires=">=3.11",
    package_dir={"": "src"},
    packages=find_packages("src"),
    install_requires=[
        "click>=8.1",
        "rich>=13",
    ],
    extras_require={
        "test": ["pytest>=8"],
    },
    entry_points={
        "console_scripts": [
            "rigs = rigstore.cli:main",
        ],
    },
)
