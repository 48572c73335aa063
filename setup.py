"""
Setup script for Knowledgeverse
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="knowledgeverse",
    version="1.0.0",
    author="Knowledgeverse",
    description="Personal knowledge vault with hybrid semantic and text search, served over MCP",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["knowledgeverse", "knowledgeverse.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "knowledgeverse=knowledgeverse.server:main",
        ],
    },
)
