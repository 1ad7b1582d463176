from setuptools import find_packages, setup

setup(
    name="otcbal",
    version="0.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2",
        "cryptography",
        "requests",
        "click",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
    entry_points={
        "console_scripts": [
            "otcbal=otcbal.cli:cli",
        ],
    },
)
