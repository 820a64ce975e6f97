from setuptools import setup, find_namespace_packages

setup(
    name="zephyr-forge",
    version="0.1.0",
    description="Local development environment orchestration for Zephyr",
    packages=find_namespace_packages(where="src", include=["zforge", "zforge.*"]),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "click>=8.0",
        "psutil>=5.9",
        "tenacity>=8.0",
        "python-dotenv>=1.0",
        "jinja2>=3.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "zforge=zforge.CLI.main:main",
            "zephyr-forge=zforge.CLI.main:main",
        ],
    },
)
