import setuptools

with open("README.md", "r") as fh:
    long_description = fh.read()

setuptools.setup(
    name="dp3t-gaen-backend",
    version="0.0.1",
    author="EPFL",
    description="DP3T GAEN upload and publication backend",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/dp-3t/dp3t-python-reference",
    packages=setuptools.find_namespace_packages(include=["dp3t_backend", "dp3t_backend.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
    install_requires=[
        "pycryptodomex",
        "fastapi",
        "pydantic>=2",
        "pydantic-settings",
        "structlog",
        "uvicorn",
    ],
    extras_require={
        "dev": ["black", "flake8", "pre-commit"],
        "test": ["pytest", "httpx"],
    },
)
