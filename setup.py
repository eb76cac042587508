"""
tgingest - Telegram channel message ingestion
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="tgingest",
    version="1.0.0",
    author="tgingest",
    description="Rate-limited, cached Telegram channel message ingestion over web scraping and the MTProto API",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/tgingest/tgingest",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "telethon>=1.34.0",
        "aiohttp>=3.9.0",
        "pyarrow>=15.0.0",
        "pandas>=2.0.0",
        "click>=8.1.0",
        "rich>=13.0.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "fast": ["cryptg>=0.4.0"],
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "black>=23.0.0",
            "ruff>=0.1.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tgingest=tgingest.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications :: Chat",
        "Topic :: Internet",
    ],
    keywords="telegram ingestion telethon scraping rate-limiting cache",
)
