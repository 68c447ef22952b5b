"""
FileOpts setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="fileopts",
    version="1.0.0",
    description="FileOpts — per-field filename collision policies for file uploads",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "fileopts=fileopts.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "pydantic>=2.5",
        "redis>=5.0",
        "pyyaml>=6.0",
        "fastapi>=0.110",
        "uvicorn>=0.27",
    ],
    extras_require={
        "postgres": [
            "psycopg2-binary>=2.9",
        ],
        "test": [
            "pytest>=8.0",
            "httpx>=0.27",
        ],
    },
)
