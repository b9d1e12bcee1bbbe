"""Package setup for Compliance Lifecycle Engine."""

from setuptools import setup, find_packages

setup(
    name="compliance-lifecycle-engine",
    version="1.0.0",
    description="Event-driven compliance task automation for Indian businesses",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"cla_engine": ["data/*.yaml"]},
    python_requires=">=3.10",
    install_requires=[
        "rich>=13.0",
        "pandas>=2.0",
        "structlog>=23.1",
        "PyYAML>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4",
        ],
    },
    entry_points={
        "console_scripts": [
            "cla-engine=cla_engine.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Financial and Insurance Industry",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Financial :: Accounting",
    ],
    keywords="compliance gst tds mca audit-trail task-automation india",
)
