"""
meshroute - Cost-aware semantic routing for device meshes
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="meshroute",
    version="1.0.0",
    description="Cost-aware semantic routing of queries to mesh capabilities",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["meshroute", "meshroute.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Distributed Computing",
        "Topic :: System :: Networking",
    ],
    python_requires=">=3.10",
    install_requires=[
        "aiohttp>=3.9.0",
        "fastapi>=0.109.0",
        "uvicorn>=0.25.0",
        "click>=8.0.0",
        "rich>=13.0.0",
        "pydantic>=2.0.0",
        "psutil>=5.9.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
            "httpx>=0.26.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "meshroute=meshroute.cli:main",
        ],
    },
)
