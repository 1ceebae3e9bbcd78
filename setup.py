#!/usr/bin/env python3
"""
eGPU Switcher - switch Xorg between an internal GPU and an eGPU
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
this_directory = Path(__file__).parent
readme = this_directory / "README.md"
long_description = readme.read_text(encoding='utf-8') if readme.exists() else ""

setup(
    name="egpu-switcher",
    version="0.1.0",
    description="Switch Xorg between an internal GPU and a hot-pluggable eGPU",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="GPL-3.0",
    packages=find_packages(where="src"),
    py_modules=["config", "main"],
    package_dir={"": "src"},
    install_requires=[
        "psutil>=5.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "egpu-switcher=main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: GNU General Public License v3 (GPLv3)",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Hardware",
    ],
    keywords="egpu gpu xorg thunderbolt nvidia amdgpu hotplug",
)
