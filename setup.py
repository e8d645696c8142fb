"""
deskrisk - Setup Configuration

Desk exposure and risk core: paper execution ledger, mark-to-market
valuation, limit hierarchy, pre-trade gate and scenario shocks.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_path = Path(__file__).parent / "README.md"
long_description = ""
if readme_path.exists():
    long_description = readme_path.read_text(encoding="utf-8")

# Read requirements
requirements_path = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_path.exists():
    with open(requirements_path) as f:
        requirements = [
            line.strip()
            for line in f
            if line.strip() and not line.startswith("#")
        ]

setup(
    name="deskrisk",
    version="0.1.0",
    description="Desk exposure and risk core: positions, limits, pre-trade checks and shocks",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where=".", include=["deskrisk", "deskrisk.*", "scripts"]),
    package_dir={"": "."},
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "deskrisk-demo=scripts.run_desk:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Financial and Insurance Industry",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Financial :: Investment",
    ],
    keywords="trading, risk, exposure, limits, stress-test, cryptocurrency",
    include_package_data=True,
    package_data={
        "": ["*.yaml"],
    },
)
