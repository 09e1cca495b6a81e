#!/usr/bin/env python

from setuptools import setup, find_packages

setup(
    name="humanitz_tracker",
    version="0.3.0",
    description="Log tailing and player statistics tracker for HumanitZ game servers",
    author="GeNe FRAG",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "requests>=2.25.0",
        "urllib3>=1.26.0",
        "tzdata>=2023.3",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "humanitz-tracker=humanitz_tracker.engine:main",
            "humanitz-nitrado-check=humanitz_tracker.nitrado.api_client:main",
        ],
    },
)
