"""Setup script for calfeed - calendar feed day views."""

from pathlib import Path

from setuptools import find_packages, setup

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements, splitting out test dependencies
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
dev_requirements = []

if requirements_file.exists():
    content = requirements_file.read_text().strip()
    lines = content.split("\n")

    for line in lines:
        line = line.strip()
        # Skip empty lines and comments
        if not line or line.startswith("#"):
            continue

        # Separate development dependencies
        if "pytest" in line or "development" in line.lower() or "testing" in line.lower():
            dev_requirements.append(line)
        else:
            requirements.append(line)

setup(
    name="calfeed",
    version="0.1.0",
    description="Calendar feed fetching, recurrence expansion and per-day event views",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="calfeed developers",
    url="https://github.com/calfeed/calfeed",
    # Package configuration
    packages=find_packages(exclude=["tests*", "docs*"]),
    include_package_data=True,
    # Dependencies
    install_requires=requirements,
    extras_require={
        "dev": dev_requirements,
        "test": dev_requirements,
    },
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Scheduling",
        "Framework :: AsyncIO",
    ],
    keywords="calendar ics icalendar rrule webcal async",
    # Entry points
    entry_points={
        "console_scripts": [
            "calfeed=calfeed_lite.__main__:main",
        ],
    },
    zip_safe=False,
)
