"""Setup script for hdrflow."""

from setuptools import setup, find_packages

setup(
    name="hdrflow",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "click>=8.0.0",
        "loguru>=0.7.0",
        "psutil>=5.9.0",
        "pydantic>=2.0.0",
        "tqdm>=4.65.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-mock>=3.10.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "hdrflow=hdrflow.cli:main",
        ],
    },
)
