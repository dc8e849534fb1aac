"""
Setup script for the storage_backup_ops package.
"""

from setuptools import setup, find_packages

setup(
    name="storage_backup_ops",
    version="0.1.0",
    description="Backup, restore and verification of storage account tables and containers on S3",
    author="Shubham Singh",
    author_email="shubh2014shiv@gmail.com",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.0.0,<3.0.0",
        "pydantic-settings>=2.0.0",
        "pyyaml>=6.0",
        "tqdm>=4.64.0",
        "zstandard>=0.21.0",
        "boto3>=1.28.0",
        "azure-core>=1.29.0",
        "azure-storage-blob>=12.19.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "mypy>=1.0.0",
            "flake8>=6.0.0",
            "prometheus-client>=0.16.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "prometheus-client>=0.16.0",
        ],
        "monitoring": [
            "prometheus-client>=0.16.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "storage-backups=backup_recovery.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.8",
)
