"""
Finance Transformers PDF store - purchase lifecycle service
"""
from setuptools import find_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="pdfstore",
    version="0.1.0",
    author="Finance Transformers",
    author_email="team@financetransformers.com",
    description="Checkout, payment links, Stripe webhooks and PDF delivery for the Finance Transformers store",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/financetransformers/pdfstore",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    entry_points={
        "console_scripts": [
            "pdfstore=core.cli:main",
        ],
    },
    include_package_data=True,
)
