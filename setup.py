#!/usr/bin/env python3
"""
Setup script for the FocusCoach focus scoring and voice coaching system.
"""

import os
from setuptools import setup, find_packages

HERE = os.path.abspath(os.path.dirname(__file__))


def read_requirements(filename):
    """Read requirements from file."""
    with open(os.path.join(HERE, filename), 'r') as f:
        return [line.strip() for line in f if line.strip() and not line.startswith('#')]


# Read README for long description
def read_readme():
    """Read README file."""
    try:
        with open(os.path.join(HERE, "README.md"), "r", encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError:
        return "Focus scoring and voice coaching system"


setup(
    name="focuscoach",
    version="1.0.0",
    author="FocusCoach Team",
    description="Focus scoring from face and gaze detections with spoken coaching nudges",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main", "web_server"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires=">=3.9",
    install_requires=read_requirements("requirements.txt"),
    extras_require={
        "dev": [
            "pytest>=7.4.2",
            "black>=23.9.1",
            "flake8>=6.1.0",
        ],
        "speech": [
            "pyttsx3>=2.90",
            "pygame>=2.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "focuscoach=main:main",
        ],
    },
    keywords=[
        "focus",
        "attention",
        "gaze",
        "coaching",
        "text-to-speech",
        "productivity",
        "education",
    ],
)
