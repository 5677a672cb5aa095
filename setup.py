"""Setup configuration for bibstruct."""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="bibstruct",
    version="0.1.0",
    description="Bibliographic structure recovery for academic PDFs: references, citation markers and links",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["bibstruct", "bibstruct.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Information Analysis",
        "Topic :: Text Processing :: Markup",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        # Core dependencies
        "python-dotenv>=1.0.0",
        "requests>=2.31.0",
        # PDF text, links and rendering
        "PyMuPDF>=1.23.0",
        "pdfplumber>=0.10.0",
        # LLM providers (reference fallback, vision OCR)
        "google-generativeai>=0.3.0",
        # Structure engine TEI parsing
        "beautifulsoup4>=4.11.0",
        "lxml>=4.9.0",
        # Citation linking
        "rapidfuzz>=3.0.0",
    ],
    extras_require={
        "dev": [
            # Development dependencies
            "pytest>=7.0.0",
            "black>=22.0.0",
            "mypy>=0.990",
            "flake8>=5.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "bibstruct=bibstruct.cli:main",
        ],
    },
)
