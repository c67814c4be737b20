from setuptools import setup, find_namespace_packages

setup(
    name="storefront-ratelimit",
    version="0.1.0",
    packages=find_namespace_packages(include=["storefront", "storefront.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "pydantic>=2",
        "pydantic-settings",
        "redis>=5",
        "uvicorn",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
