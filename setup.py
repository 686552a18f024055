"""
Setup configuration for engagebrain package.
"""

from setuptools import setup, find_packages

setup(
    name="engagebrain",
    version="1.0.0",
    description="Engagement decision pipeline for social comments",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={
        "engagebrain": ["rules/*.yml", "rules/signals/*/*.json"],
    },
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "python-dotenv>=1.0",
        "PyYAML>=6.0",
        "httpx>=0.25",
        "tenacity>=8.2",
        "openai>=1.0",
        "supabase>=2.0",
        "logfire>=0.30",
        "click>=8.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "engagebrain=engagebrain.cli.main:cli",
        ],
    },
)
