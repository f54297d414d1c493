"""
Setup configuration for PyHashLib package
"""

from setuptools import setup, find_packages

setup(
    name="pyhashlib",
    version="0.1.0",
    description="Concurrent multi-algorithm file hashing engine",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    author="PyHashLib Contributors",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "aiofiles>=25.1.0",
        "blake3>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.24.0",
        ],
        "dev": [
            "pytest>=7.0",
            "pytest-asyncio>=0.24.0",
            "black>=23.0",
            "flake8>=6.0",
            "mypy>=1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "pyhashlib=pyhashlib.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Programming Language :: Python :: 3.14",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Security :: Cryptography",
        "Topic :: System :: Filesystems",
    ],
    keywords="hash digest checksum blake3 sha256 md5 asyncio concurrent",
    license="MIT",
)
