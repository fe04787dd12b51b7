from setuptools import find_packages, setup

setup(
    name="slidescribe-orchestration",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*", "alembic", "alembic.*"]),
    py_modules=["app", "database"],
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "pydantic>=2.5",
        "sqlalchemy>=2.0",
        "alembic>=1.13",
        "aiohttp>=3.9",
        "redis>=5.0.1",
        "pyyaml>=6.0",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
        ],
    },
    include_package_data=True,
    description="Orchestration and status tracking for long-running AI provider jobs in SlideScribe",
    author="Andreas Malathouras",
    author_email="steelstridertgm@gmail.com",
)
