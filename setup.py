#!/usr/bin/env python3
"""
Setup script for the technology usage & mental health analysis pipeline
"""
from pathlib import Path

from setuptools import find_packages, setup


def read_requirements():
    """Read runtime dependencies from requirements.txt"""
    requirements = Path(__file__).parent / "requirements.txt"
    lines = requirements.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.startswith("#")]


setup(
    name="tech-wellbeing",
    version="1.0.0",
    description="Survey analysis of technology usage and mental health outcomes",
    packages=find_packages(include=["tech_wellbeing", "tech_wellbeing.*"]),
    py_modules=["main"],
    python_requires=">=3.9",
    install_requires=read_requirements(),
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "tech-wellbeing=main:main",
        ]
    },
)
