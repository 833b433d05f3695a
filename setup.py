from setuptools import setup, find_packages

setup(
    name="ab-test-engine",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pandas>=1.5.0",
        "numpy>=1.21.0",
        "scipy>=1.7.0",
        "Jinja2>=3.0.0",
        "streamlit>=1.20.0",
        "flask>=2.2.0",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
    ],
    extras_require={
        "parquet": ["pyarrow>=10.0.0"],
        "test": ["pytest>=7.0.0"],
    },
)
