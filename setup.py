from setuptools import setup, find_packages

setup(
    name="modeldock",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "docker>=7.0.0",
        "requests>=2.31.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "python-multipart>=0.0.9",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "PyYAML>=6.0",
        "click>=8.1.3",
        "tabulate>=0.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "httpx>=0.26.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "modeldock=modeldock.cli:main",
        ],
    },
    python_requires=">=3.8",
)
