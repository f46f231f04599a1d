"""Setup configuration for sar_drift package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

# Define package requirements
REQUIRED_PACKAGES = [
    # Core scientific computing
    "numpy>=1.20.0",

    # Heat-map raster output
    "matplotlib>=3.3.0",
]

OPTIONAL_PACKAGES = {
    "dev": [
        "pytest>=6.0.0",
        "pytest-cov>=2.12.0",
    ],
}

setup(
    name="sar-drift",
    version="0.1.0",
    author="sar_drift contributors",
    description="Monte Carlo drift simulator for search-and-rescue planning",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Oceanography",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.8",
    install_requires=REQUIRED_PACKAGES,
    extras_require=OPTIONAL_PACKAGES,
    entry_points={
        "console_scripts": [
            "sar-drift=sar_drift.cli:main",
        ],
    },
)
