from setuptools import setup, find_packages

setup(
    name="zenzbench",
    version="0.1.0",
    packages=find_packages(include=["zenzbench", "zenzbench.*"]),
    install_requires=[
        "coremltools>=9.0",     # Loading and running the zenz Core ML models
        "numpy>=1.24.0",        # Input tensors and logits arg-max
        "tqdm>=4.66.0",         # Progress bar over benchmark cases
        "transformers>=4.36.0", # HuggingFace tokenizer
        "pyyaml>=6.0"           # bench.yaml / cases.yaml
    ],
    extras_require={
        "dev": [
            "black>=23.12.0",   # Code formatting
            "flake8>=7.0.0",    # Linting
            "pytest>=7.4.0",    # Testing
            "pytest-cov>=4.1.0" # Test coverage
        ]
    },
    entry_points={
        "console_scripts": ["zenzbench=zenzbench.cli:main"],
    },
    description="Greedy decoding latency benchmark for zenz Core ML kana-kanji models",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="ANEMLL Team",
    author_email="realanemll@gmail.com",
    license="MIT",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "License :: OSI Approved :: MIT License",
        "Operating System :: MacOS :: MacOS X",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Intended Audience :: Science/Research",
        "Development Status :: 3 - Alpha"
    ],
    python_requires=">=3.9",
)
