"""Setup script for the hotel shuttle booking service."""
from setuptools import setup, find_namespace_packages

setup(
    name="shuttlebook",
    version="1.0.0",
    description="Seat allocation and trip lifecycle core for hotel shuttle services",
    packages=find_namespace_packages(include=["shuttlebook*"], exclude=["shuttlebook.backend.tests*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "sqlalchemy>=2.0",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "tenacity>=8.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "httpx>=0.25",
        ],
    },
)
