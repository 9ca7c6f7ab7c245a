from setuptools import setup, find_packages

setup(
    name="distlimit",
    version="0.1.0",
    packages=find_packages(include=["distlimit", "distlimit.*"]),
    python_requires=">=3.12",
    install_requires=[
        "redis>=5.0",
        "pydantic>=2",
        "pydantic-settings>=2",
    ],
    extras_require={
        "test": ["pytest", "pytest-asyncio"],
    },
)
